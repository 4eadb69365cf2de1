from datetime import timedelta

import pytest

from paysync.domain.errors import ProcessorError, StoreError
from paysync.domain.models import SubscriptionRecord
from paysync.domain.models.subscription import UPDATED_BY_RECONCILER, UPDATED_BY_WEBHOOK
from paysync.services.subscription_service import is_trial_active, subscription_cache_key

from conftest import START


def _paid_record(account_id="user-1", plan_id="premium", updated_by=UPDATED_BY_RECONCILER, updated_at=None):
    return SubscriptionRecord(
        account_id=account_id,
        plan_id=plan_id,
        status="active",
        is_active=True,
        stripe_customer_id="cus_0001",
        stripe_subscription_id="sub_local",
        current_period_start=START,
        current_period_end=START + timedelta(days=30),
        updated_at=updated_at or START - timedelta(days=1),
        updated_by=updated_by,
    )


def test_is_trial_active_boundary():
    assert is_trial_active(START + timedelta(seconds=1), now=START)
    assert not is_trial_active(START, now=START)
    assert not is_trial_active(None, now=START)


def test_trial_window_edges(reconciler, make_account, clock, persistence):
    make_account(created_at=START)

    clock.now = START + timedelta(days=3) - timedelta(seconds=1)
    inside = reconciler.get_current_plan("user-1")
    assert inside.plan_id == "free"
    assert inside.is_active is True
    assert inside.status == "trialing"
    assert inside.period_end == START + timedelta(days=3)
    assert persistence.get_subscription("user-1").status == "trialing"

    clock.now = START + timedelta(days=3, seconds=1)
    outside = reconciler.get_current_plan("user-1", force_refresh=True)
    assert outside.plan_id == "free"
    assert outside.is_active is False
    assert outside.status == "inactive"
    assert outside.degraded is False


def test_expired_trial_on_first_call(reconciler, make_account, clock):
    make_account(created_at=START - timedelta(days=10))
    status = reconciler.get_current_plan("user-1")
    assert (status.plan_id, status.is_active, status.status) == ("free", False, "inactive")


def test_unknown_account_is_free_and_inactive(reconciler):
    status = reconciler.get_current_plan("ghost")
    assert status.plan_id == "free"
    assert status.is_active is False


def test_admin_role_beats_local_free_record(reconciler, make_account, persistence):
    make_account(is_admin=True)
    persistence.upsert_subscription(
        SubscriptionRecord(account_id="user-1", plan_id="free", status="inactive", is_active=False)
    )
    status = reconciler.get_current_plan("user-1")
    assert status.plan_id == "admin"
    assert status.is_active is True
    assert status.period_end is None
    assert status.status == "active"


def test_operator_email_is_admin(reconciler, make_account):
    make_account(account_id="ops", email="OPS@example.com")
    assert reconciler.get_current_plan("ops").plan_id == "admin"


def test_active_stripe_subscription_is_adopted(reconciler, make_account, gateway, persistence):
    make_account(stripe_customer_id="cus_0001")
    gateway.add_subscription("sub_1", "cus_0001", "price_premium", 9900)

    status = reconciler.get_current_plan("user-1")

    assert status.plan_id == "premium"
    assert status.is_active is True
    assert status.period_end == START + timedelta(days=30)
    record = persistence.get_subscription("user-1")
    assert record.plan_id == "premium"
    assert record.stripe_subscription_id == "sub_1"
    assert record.updated_by == UPDATED_BY_RECONCILER


@pytest.mark.parametrize(
    "unit_amount, expected",
    [(2990, "basic"), (4990, "intermediate"), (9900, "premium")],
)
def test_unknown_price_is_bucketed_by_amount(reconciler, make_account, gateway, unit_amount, expected):
    make_account(stripe_customer_id="cus_0001")
    gateway.add_subscription("sub_1", "cus_0001", "price_not_in_catalog", unit_amount)
    assert reconciler.get_current_plan("user-1").plan_id == expected


def test_customer_found_by_email_is_persisted(reconciler, make_account, gateway, persistence):
    make_account()
    gateway.customers["cus_0042"] = {"id": "cus_0042", "email": "user1@example.com"}
    gateway.add_subscription("sub_1", "cus_0042", "price_basic", 2990)

    assert reconciler.get_current_plan("user-1").plan_id == "basic"
    assert persistence.get_profile("user-1").stripe_customer_id == "cus_0042"


def test_processor_without_subscriptions_demotes_paid_record(reconciler, make_account, persistence):
    make_account(stripe_customer_id="cus_0001")
    persistence.upsert_subscription(_paid_record())

    status = reconciler.get_current_plan("user-1")

    assert status.plan_id == "premium"
    assert status.is_active is False
    assert status.status == "inactive"
    stored = persistence.get_subscription("user-1")
    assert stored.is_active is False
    assert stored.status == "inactive"


def test_processor_without_subscriptions_keeps_trial_record(reconciler, make_account, persistence, gateway, clock):
    make_account(stripe_customer_id="cus_0001", created_at=START)
    reconciler.get_current_plan("user-1")

    clock.advance(days=1)
    status = reconciler.get_current_plan("user-1", force_refresh=True)

    assert gateway.list_calls == 2
    assert (status.plan_id, status.is_active, status.status) == ("free", True, "trialing")
    stored = persistence.get_subscription("user-1")
    assert stored.is_active is True
    assert stored.status == "trialing"

    clock.advance(days=2, seconds=1)
    lapsed = reconciler.get_current_plan("user-1", force_refresh=True)
    assert (lapsed.plan_id, lapsed.is_active, lapsed.status) == ("free", False, "inactive")


def test_recent_webhook_write_is_not_overwritten(reconciler, make_account, persistence, clock):
    make_account(stripe_customer_id="cus_0001")
    persistence.upsert_subscription(
        _paid_record(updated_by=UPDATED_BY_WEBHOOK, updated_at=clock.now - timedelta(seconds=30))
    )

    reconciler.get_current_plan("user-1")

    stored = persistence.get_subscription("user-1")
    assert stored.is_active is True
    assert stored.updated_by == UPDATED_BY_WEBHOOK


def test_stale_webhook_write_can_be_reconciled(reconciler, make_account, persistence, clock):
    make_account(stripe_customer_id="cus_0001")
    persistence.upsert_subscription(
        _paid_record(updated_by=UPDATED_BY_WEBHOOK, updated_at=clock.now - timedelta(minutes=10))
    )

    reconciler.get_current_plan("user-1")

    stored = persistence.get_subscription("user-1")
    assert stored.is_active is False
    assert stored.updated_by == UPDATED_BY_RECONCILER


def test_record_past_end_date_reports_inactive(reconciler, make_account, persistence, clock):
    make_account()
    record = _paid_record()
    record.stripe_customer_id = None
    record.end_date = clock.now - timedelta(hours=1)
    persistence.upsert_subscription(record)

    status = reconciler.get_current_plan("user-1")
    assert status.is_active is False
    assert status.status == "inactive"


def test_processor_failure_marks_answer_degraded(reconciler, make_account, persistence, gateway, cache):
    make_account(stripe_customer_id="cus_0001")
    persistence.upsert_subscription(_paid_record())
    gateway.fail_with = ProcessorError("stripe down")

    status = reconciler.get_current_plan("user-1")

    assert status.degraded is True
    assert status.plan_id == "premium"
    assert status.is_active is True
    assert cache.get(subscription_cache_key("user-1")) is None


def test_results_are_cached_until_forced(reconciler, make_account, gateway):
    make_account(stripe_customer_id="cus_0001")
    gateway.add_subscription("sub_1", "cus_0001", "price_basic", 2990)

    reconciler.get_current_plan("user-1")
    reconciler.get_current_plan("user-1")
    assert gateway.list_calls == 1

    reconciler.get_current_plan("user-1", force_refresh=True)
    assert gateway.list_calls == 2


def test_cache_expires_after_ttl(reconciler, make_account, gateway, cache_clock):
    make_account(stripe_customer_id="cus_0001")
    reconciler.get_current_plan("user-1")
    cache_clock.value += 301
    reconciler.get_current_plan("user-1")
    assert gateway.list_calls == 2


def test_store_failure_serves_last_value_degraded(reconciler, make_account, gateway, persistence, monkeypatch):
    make_account(stripe_customer_id="cus_0001")
    gateway.add_subscription("sub_1", "cus_0001", "price_intermediate", 4990)
    assert reconciler.get_current_plan("user-1").plan_id == "intermediate"

    def broken(_account_id):
        raise StoreError("disk I/O error")

    monkeypatch.setattr(persistence, "get_subscription", broken)
    status = reconciler.get_current_plan("user-1", force_refresh=True)

    assert status.plan_id == "intermediate"
    assert status.degraded is True


def test_store_failure_without_history_never_raises(reconciler, persistence, monkeypatch):
    def broken(_account_id):
        raise StoreError("database is locked")

    monkeypatch.setattr(persistence, "get_profile", broken)
    status = reconciler.get_current_plan("user-1")
    assert status.plan_id == "free"
    assert status.is_active is False
    assert status.degraded is True


@pytest.mark.parametrize(
    "plan_id, feature, allowed",
    [
        ("premium", "voice", True),
        ("premium", "audio", True),
        ("intermediate", "audio", True),
        ("intermediate", "video", False),
        ("basic", "audio", False),
        ("admin", "video", True),
        ("premium", "teleport", False),
        ("gold", "audio", False),
    ],
)
def test_can_use_feature(reconciler, plan_id, feature, allowed):
    assert reconciler.can_use_feature(plan_id, feature) is allowed
    assert reconciler.can_use_feature(plan_id, feature) is allowed


def test_feature_check_falls_back_to_static_table(reconciler, catalog_service, monkeypatch):
    def broken(_plan_id):
        raise StoreError("no such table: plans")

    monkeypatch.setattr(catalog_service, "get_plan", broken)
    assert reconciler.can_use_feature("intermediate", "audio") is True
    assert reconciler.can_use_feature("intermediate", "voice") is False
    assert reconciler.can_use_feature("premium", "video") is True
