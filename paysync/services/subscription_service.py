"""Reconciles the local subscription record with Stripe to answer plan queries."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from ..domain.errors import ProcessorError, StoreError
from ..domain.models import ADMIN_PLAN_ID, FREE_PLAN_ID, Account, PlanStatus, SubscriptionRecord
from ..domain.models.subscription import UPDATED_BY_RECONCILER, UPDATED_BY_WEBHOOK
from ..domain.ports.cache import Cache, CacheEntry
from ..domain.ports.payments import PaymentGateway
from ..domain.ports.persistence import PersistenceGateway
from .billing_mapping import PlanMapper, from_timestamp, subscription_period, subscription_price
from .catalog_service import FEATURE_CACHE_PREFIX, CatalogService
from .privilege_service import PrivilegeResolver

logger = logging.getLogger(__name__)

FEATURES = ("audio", "voice", "video")

# Used only when the catalog cannot be read.
STATIC_FEATURE_TABLE: Dict[str, FrozenSet[str]] = {
    "audio": frozenset({"intermediate", "premium"}),
    "voice": frozenset({"premium"}),
    "video": frozenset({"premium"}),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def subscription_cache_key(account_id: str) -> str:
    return f"subscription:{account_id}"


def is_trial_active(end_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """Return True while ``end_date`` is set and strictly in the future."""
    if end_date is None:
        return False
    return (now or _utcnow()) < end_date


class SubscriptionReconciler:
    """Determines an account's current plan.

    Sources are consulted in order: administrator override, Stripe's live
    subscription list, the local subscription record, and finally the free
    trial window. Remote failures never escape; they produce an answer flagged
    ``degraded`` built from the last cached value or the trial default.
    """

    def __init__(
        self,
        persistence: PersistenceGateway,
        gateway: PaymentGateway,
        catalog: CatalogService,
        privileges: PrivilegeResolver,
        cache: Cache,
        *,
        trial_days: int = 3,
        cache_ttl_seconds: float = 300,
        catalog_ttl_seconds: float = 3600,
        webhook_freshness_seconds: float = 120,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._persistence = persistence
        self._gateway = gateway
        self._catalog = catalog
        self._plans = PlanMapper(catalog)
        self._privileges = privileges
        self._cache = cache
        self._trial_days = trial_days
        self._cache_ttl = cache_ttl_seconds
        self._catalog_ttl = catalog_ttl_seconds
        self._webhook_freshness = timedelta(seconds=webhook_freshness_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Plan lookup
    # ------------------------------------------------------------------
    def get_current_plan(self, account_id: str, force_refresh: bool = False) -> PlanStatus:
        key = subscription_cache_key(account_id)
        previous = self._cache.get_entry(key)
        if force_refresh:
            self._cache.delete(key)
        else:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        try:
            status, ttl = self._reconcile(account_id)
        except Exception:
            logger.exception("Plan reconciliation failed for %s; serving fallback", account_id)
            return self._fallback(account_id, previous)

        if status.degraded:
            logger.warning("Serving degraded plan %s for %s", status.plan_id, account_id)
        else:
            self._cache.set(key, status, ttl)
        return status

    def invalidate(self, account_id: str) -> None:
        self._cache.delete(subscription_cache_key(account_id))

    def _reconcile(self, account_id: str) -> Tuple[PlanStatus, float]:
        account = self._persistence.get_profile(account_id)
        if account is None:
            logger.info("No profile for %s; reporting free plan", account_id)
            return PlanStatus.free_inactive(), self._cache_ttl

        if self._privileges.is_admin(account):
            logger.debug("Account %s resolved as administrator", account_id)
            return PlanStatus.admin(), self._catalog_ttl

        now = self._clock()
        record = self._persistence.get_subscription(account_id)
        customer_id = account.stripe_customer_id or (record.stripe_customer_id if record else None)
        processor_answered = False
        degraded = False

        try:
            if not customer_id:
                customer_id = self._lookup_customer(account)
            if customer_id:
                subscriptions = self._gateway.list_active_subscriptions(customer_id, limit=1)
                processor_answered = True
                if subscriptions:
                    status = self._adopt(account, customer_id, subscriptions[0], record, now)
                    return status, self._cache_ttl
        except ProcessorError as exc:
            logger.warning("Stripe unavailable while reconciling %s: %s", account_id, exc)
            degraded = True

        if record is not None:
            if processor_answered and record.is_active and record.is_paid():
                record = self._demote(record, now)
            status = self._from_record(record, now)
        else:
            status = self._start_trial(account, now)

        return (status.as_degraded() if degraded else status), self._cache_ttl

    def _lookup_customer(self, account: Account) -> Optional[str]:
        if not account.email:
            return None
        customer = self._gateway.find_customer_by_email(account.email)
        if not customer:
            return None
        customer_id = customer["id"]
        logger.info("Linked Stripe customer %s to account %s by email", customer_id, account.id)
        try:
            self._persistence.set_customer_ref(account.id, customer_id)
        except StoreError as exc:
            logger.warning("Could not store customer mapping for %s: %s", account.id, exc)
        return customer_id

    def _adopt(
        self,
        account: Account,
        customer_id: str,
        subscription: dict,
        record: Optional[SubscriptionRecord],
        now: datetime,
    ) -> PlanStatus:
        price_id, unit_amount = subscription_price(subscription)
        plan_id = self._plans.plan_for_price(price_id, unit_amount)
        period_start, period_end = subscription_period(subscription)
        end_date = from_timestamp(subscription.get("cancel_at"))
        status = subscription.get("status") or "active"

        if self._may_overwrite(record, now):
            self._write(
                SubscriptionRecord(
                    account_id=account.id,
                    plan_id=plan_id,
                    status=status,
                    is_active=True,
                    stripe_customer_id=customer_id,
                    stripe_subscription_id=subscription.get("id"),
                    current_period_start=period_start,
                    current_period_end=period_end,
                    end_date=end_date,
                    updated_at=now,
                    updated_by=UPDATED_BY_RECONCILER,
                )
            )
        return PlanStatus(
            plan_id=plan_id,
            is_active=True,
            status=status,
            period_end=period_end,
            end_date=end_date,
        )

    def _demote(self, record: SubscriptionRecord, now: datetime) -> SubscriptionRecord:
        logger.info(
            "Stripe reports no active subscription for %s; demoting local %s record",
            record.account_id,
            record.plan_id,
        )
        demoted = SubscriptionRecord(
            account_id=record.account_id,
            plan_id=record.plan_id,
            status="inactive",
            is_active=False,
            stripe_customer_id=record.stripe_customer_id,
            stripe_subscription_id=record.stripe_subscription_id,
            current_period_start=record.current_period_start,
            current_period_end=record.current_period_end,
            end_date=record.end_date,
            updated_at=now,
            updated_by=UPDATED_BY_RECONCILER,
        )
        if self._may_overwrite(record, now):
            self._write(demoted)
        return demoted

    def _from_record(self, record: SubscriptionRecord, now: datetime) -> PlanStatus:
        is_active = record.is_active
        status = record.status
        if is_active and record.end_date is not None and not is_trial_active(record.end_date, now):
            is_active = False
            status = "inactive"
        return PlanStatus(
            plan_id=record.plan_id,
            is_active=is_active,
            status=status,
            period_end=record.current_period_end or record.end_date,
            end_date=record.end_date,
        )

    def _start_trial(self, account: Account, now: datetime) -> PlanStatus:
        status = self._trial_status(account, now)
        self._write(
            SubscriptionRecord(
                account_id=account.id,
                plan_id=FREE_PLAN_ID,
                status=status.status,
                is_active=status.is_active,
                stripe_customer_id=account.stripe_customer_id,
                end_date=status.end_date,
                updated_at=now,
                updated_by=UPDATED_BY_RECONCILER,
            )
        )
        return status

    def _trial_status(self, account: Account, now: datetime) -> PlanStatus:
        trial_end = account.created_at + timedelta(days=self._trial_days)
        if is_trial_active(trial_end, now):
            return PlanStatus(
                plan_id=FREE_PLAN_ID,
                is_active=True,
                status="trialing",
                period_end=trial_end,
                end_date=trial_end,
            )
        return PlanStatus(plan_id=FREE_PLAN_ID, is_active=False, status="inactive", end_date=trial_end)

    def _may_overwrite(self, record: Optional[SubscriptionRecord], now: datetime) -> bool:
        """Reconciler writes yield to a webhook write made within the freshness window."""
        if record is None or record.updated_by != UPDATED_BY_WEBHOOK or record.updated_at is None:
            return True
        if now - record.updated_at < self._webhook_freshness:
            logger.debug("Skipping reconciler write for %s; recent webhook update", record.account_id)
            return False
        return True

    def _write(self, record: SubscriptionRecord) -> None:
        try:
            self._persistence.upsert_subscription(record)
        except StoreError as exc:
            logger.warning("Could not persist reconciled record for %s: %s", record.account_id, exc)

    def _fallback(self, account_id: str, previous: Optional[CacheEntry]) -> PlanStatus:
        if previous is not None:
            return previous.value.as_degraded()
        try:
            account = self._persistence.get_profile(account_id)
        except StoreError:
            account = None
        if account is None:
            return PlanStatus.free_inactive(degraded=True)
        return self._trial_status(account, self._clock()).as_degraded()

    # ------------------------------------------------------------------
    # Feature gates
    # ------------------------------------------------------------------
    def can_use_feature(self, plan_id: str, feature: str) -> bool:
        if feature not in FEATURES:
            return False
        if plan_id == ADMIN_PLAN_ID:
            return True

        key = f"{FEATURE_CACHE_PREFIX}{plan_id}:{feature}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        try:
            plan = self._catalog.get_plan(plan_id)
        except StoreError as exc:
            logger.warning("Catalog unavailable for feature check %s/%s: %s", plan_id, feature, exc)
            return plan_id in STATIC_FEATURE_TABLE[feature]
        if plan is None:
            return plan_id in STATIC_FEATURE_TABLE[feature]

        allowed = plan.has_feature(feature)
        self._cache.set(key, allowed, self._catalog_ttl)
        return allowed
