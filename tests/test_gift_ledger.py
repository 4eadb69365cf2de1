from datetime import timedelta
from decimal import Decimal

import pytest

from paysync.domain.errors import InvalidRequest, NotFound
from paysync.services.gift_service import GiftLedgerService


@pytest.fixture
def ledger(persistence):
    return GiftLedgerService(persistence)


@pytest.fixture
def purchases(seeded_catalog, make_account, clock):
    make_account()
    make_account(account_id="user-2", email="user2@example.com")
    first = seeded_catalog.record_gift_purchase("user-1", "rose", 1, Decimal("5.00"), "pi_a", clock.now)
    second = seeded_catalog.record_gift_purchase(
        "user-1", "ring", 2, Decimal("20.00"), "pi_b", clock.now + timedelta(minutes=5)
    )
    other = seeded_catalog.record_gift_purchase("user-2", "rose", 1, Decimal("5.00"), "pi_c", clock.now)
    return first, second, other


def test_duplicate_payment_reference_is_ignored(seeded_catalog, purchases, clock):
    assert seeded_catalog.record_gift_purchase("user-1", "rose", 1, Decimal("5.00"), "pi_a", clock.now) is None


def test_list_is_newest_first_and_scoped(ledger, purchases, make_account):
    account = make_account()
    listed = ledger.list_purchased_gifts(account)
    assert [item.stripe_payment_ref for item in listed] == ["pi_b", "pi_a"]


def test_mark_used_links_message(ledger, purchases, make_account):
    first, _, _ = purchases
    used = ledger.mark_gift_used(make_account(), first.id, "msg-1")
    assert used.used_in_chat_message_id == "msg-1"


def test_mark_used_twice_with_same_message_is_noop(ledger, purchases, make_account):
    first, _, _ = purchases
    account = make_account()
    ledger.mark_gift_used(account, first.id, "msg-1")
    again = ledger.mark_gift_used(account, first.id, "msg-1")
    assert again.used_in_chat_message_id == "msg-1"


def test_mark_used_with_other_message_is_rejected(ledger, purchases, make_account):
    first, _, _ = purchases
    account = make_account()
    ledger.mark_gift_used(account, first.id, "msg-1")
    with pytest.raises(InvalidRequest):
        ledger.mark_gift_used(account, first.id, "msg-2")


def test_cannot_use_someone_elses_gift(ledger, purchases, make_account):
    _, _, other = purchases
    with pytest.raises(NotFound):
        ledger.mark_gift_used(make_account(), other.id, "msg-1")


def test_conditional_update_keeps_first_message(seeded_catalog, purchases):
    first, _, _ = purchases
    assert seeded_catalog.mark_gift_used(first.id, "msg-1").used_in_chat_message_id == "msg-1"
    assert seeded_catalog.mark_gift_used(first.id, "msg-2") is None
    assert seeded_catalog.mark_gift_used(first.id, "msg-1").used_in_chat_message_id == "msg-1"


def test_concurrent_use_with_other_message_loses(ledger, seeded_catalog, purchases, make_account, monkeypatch):
    first, _, _ = purchases
    account = make_account()
    # The second request read the purchase before the first one wrote it.
    monkeypatch.setattr(seeded_catalog, "get_purchased_gift", lambda purchase_id: first)
    ledger.mark_gift_used(account, first.id, "msg-1")

    with pytest.raises(InvalidRequest):
        ledger.mark_gift_used(account, first.id, "msg-2")

    stored = next(item for item in seeded_catalog.list_purchased_gifts("user-1") if item.id == first.id)
    assert stored.used_in_chat_message_id == "msg-1"
