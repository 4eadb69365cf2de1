"""Applies Stripe webhook events to the local subscription and gift records."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from ..domain.models import Account, SubscriptionRecord, WebhookResult
from ..domain.models.subscription import ACTIVE_STATUSES, UPDATED_BY_WEBHOOK
from ..domain.ports.cache import Cache
from ..domain.ports.payments import PaymentGateway
from ..domain.ports.persistence import PersistenceGateway
from .billing_mapping import (
    PlanMapper,
    cents_to_decimal,
    from_timestamp,
    invoice_price,
    invoice_subscription_id,
    object_id,
    subscription_period,
    subscription_price,
)
from .catalog_service import CatalogService
from .subscription_service import subscription_cache_key

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookProcessor:
    """Verifies Stripe events and folds them into the local records.

    Stripe may deliver events late, out of order or more than once, so every
    branch overwrites fields with the latest known values. An event for a lapsed
    subscription never replaces a record held by another active subscription.
    Events whose account cannot be resolved are logged and acknowledged.
    """

    def __init__(
        self,
        persistence: PersistenceGateway,
        gateway: PaymentGateway,
        catalog: CatalogService,
        cache: Cache,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._persistence = persistence
        self._gateway = gateway
        self._catalog = catalog
        self._plans = PlanMapper(catalog)
        self._cache = cache
        self._clock = clock
        self._handlers: Dict[str, Handler] = {
            "checkout.session.completed": self._on_checkout_completed,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.paid": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
            "customer.subscription.created": self._on_subscription_updated,
            "customer.subscription.updated": self._on_subscription_updated,
            "customer.subscription.deleted": self._on_subscription_deleted,
        }

    def handle_event(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookResult:
        event = self._gateway.construct_event(raw_body, signature_header or "")
        event_type = event["type"]
        event_id = event.get("id")
        payload = (event.get("data") or {}).get("object") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Ignoring unhandled Stripe event %s (%s)", event_type, event_id)
            return WebhookResult(event_id=event_id, event_type=event_type, handled=False)

        logger.info("Processing Stripe event %s (%s)", event_type, event_id)
        handled = handler(payload)
        return WebhookResult(event_id=event_id, event_type=event_type, handled=handled)

    # ------------------------------------------------------------------
    # checkout.session.completed
    # ------------------------------------------------------------------
    def _on_checkout_completed(self, session: Dict[str, Any]) -> bool:
        metadata = session.get("metadata") or {}
        account_id = metadata.get("account_id") or session.get("client_reference_id")
        if not account_id:
            logger.warning("Checkout session %s carries no account reference; skipping", session.get("id"))
            return False
        account = self._persistence.get_profile(account_id)
        if account is None:
            logger.warning("Checkout session %s references unknown account %s", session.get("id"), account_id)
            return False

        customer_id = object_id(session.get("customer"))
        if customer_id and not account.stripe_customer_id:
            self._persistence.set_customer_ref(account.id, customer_id)

        mode = session.get("mode")
        if mode == "subscription":
            return self._complete_subscription_checkout(account, session, metadata, customer_id)
        if mode == "payment":
            return self._complete_gift_checkout(account, session, metadata)
        logger.info("Checkout session %s has unsupported mode %s", session.get("id"), mode)
        return False

    def _complete_subscription_checkout(
        self,
        account: Account,
        session: Dict[str, Any],
        metadata: Dict[str, Any],
        customer_id: Optional[str],
    ) -> bool:
        subscription_id = object_id(session.get("subscription"))
        plan_id = metadata.get("plan_id") or metadata.get("item_id")
        if not subscription_id or not plan_id:
            logger.warning(
                "Subscription checkout %s lacks subscription or plan id; skipping", session.get("id")
            )
            return False

        subscription = self._gateway.retrieve_subscription(subscription_id)
        status = subscription.get("status") or "active"
        if self._held_by_other_subscription(account.id, subscription_id, status):
            return False
        period_start, period_end = subscription_period(subscription)
        self._persistence.upsert_subscription(
            SubscriptionRecord(
                account_id=account.id,
                plan_id=plan_id,
                status=status,
                is_active=status in ACTIVE_STATUSES,
                stripe_customer_id=customer_id or object_id(subscription.get("customer")),
                stripe_subscription_id=subscription_id,
                current_period_start=period_start,
                current_period_end=period_end,
                end_date=from_timestamp(subscription.get("cancel_at")),
                updated_at=self._clock(),
                updated_by=UPDATED_BY_WEBHOOK,
            )
        )
        self._invalidate(account.id)
        logger.info("Account %s subscribed to %s (%s)", account.id, plan_id, subscription_id)
        return True

    def _complete_gift_checkout(
        self, account: Account, session: Dict[str, Any], metadata: Dict[str, Any]
    ) -> bool:
        gift_id = metadata.get("gift_id") or metadata.get("item_id")
        gift = self._catalog.get_gift(gift_id) if gift_id else None
        if gift is None:
            logger.warning("Gift checkout %s references unknown gift %s", session.get("id"), gift_id)
            return False

        try:
            quantity = max(int(metadata.get("quantity") or 1), 1)
        except (TypeError, ValueError):
            logger.warning("Gift checkout %s has invalid quantity %r", session.get("id"), metadata.get("quantity"))
            quantity = 1

        payment_intent_id = object_id(session.get("payment_intent"))
        amount = session.get("amount_total")
        if payment_intent_id:
            intent = self._gateway.retrieve_payment_intent(payment_intent_id)
            amount = intent.get("amount_received") or amount

        purchase = self._persistence.record_gift_purchase(
            account_id=account.id,
            gift_id=gift.id,
            quantity=quantity,
            price_paid=cents_to_decimal(amount),
            stripe_payment_ref=payment_intent_id or session["id"],
            purchased_at=self._clock(),
        )
        if purchase is None:
            logger.info("Gift purchase for session %s already recorded", session.get("id"))
            return False
        logger.info("Recorded %s x %s for account %s", quantity, gift.id, account.id)
        return True

    # ------------------------------------------------------------------
    # invoices
    # ------------------------------------------------------------------
    def _on_invoice_paid(self, invoice: Dict[str, Any]) -> bool:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info("Invoice %s is not tied to a subscription", invoice.get("id"))
            return False

        record = self._persistence.get_subscription_by_processor_ref(subscription_id)
        subscription = self._gateway.retrieve_subscription(subscription_id)
        status = subscription.get("status") or "active"
        period_start, period_end = subscription_period(subscription)
        now = self._clock()

        if record is not None:
            self._persistence.update_subscription(
                subscription_id,
                updated_by=UPDATED_BY_WEBHOOK,
                updated_at=now,
                status=status,
                is_active=status in ACTIVE_STATUSES,
                current_period_start=period_start,
                current_period_end=period_end,
            )
            self._invalidate(record.account_id)
            logger.info("Renewed subscription %s until %s", subscription_id, period_end)
            return True

        account = self._resolve_account(invoice.get("customer"), subscription)
        if account is None:
            return False
        if self._held_by_other_subscription(account.id, subscription_id, status):
            return False
        price_id, unit_amount = invoice_price(invoice)
        if price_id is None:
            price_id, unit_amount = subscription_price(subscription)
        plan_id = self._plans.plan_for_price(price_id, unit_amount)
        self._persistence.upsert_subscription(
            SubscriptionRecord(
                account_id=account.id,
                plan_id=plan_id,
                status=status,
                is_active=status in ACTIVE_STATUSES,
                stripe_customer_id=object_id(invoice.get("customer")),
                stripe_subscription_id=subscription_id,
                current_period_start=period_start,
                current_period_end=period_end,
                end_date=from_timestamp(subscription.get("cancel_at")),
                updated_at=now,
                updated_by=UPDATED_BY_WEBHOOK,
            )
        )
        self._invalidate(account.id)
        logger.info("Rebuilt subscription record for %s from invoice %s", account.id, invoice.get("id"))
        return True

    def _on_invoice_failed(self, invoice: Dict[str, Any]) -> bool:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return False
        record = self._persistence.update_subscription(
            subscription_id,
            updated_by=UPDATED_BY_WEBHOOK,
            updated_at=self._clock(),
            status="past_due",
        )
        if record is None:
            logger.warning("Payment failed for unknown subscription %s", subscription_id)
            return False
        self._invalidate(record.account_id)
        logger.info("Subscription %s marked past_due", subscription_id)
        return True

    # ------------------------------------------------------------------
    # customer.subscription.*
    # ------------------------------------------------------------------
    def _on_subscription_updated(self, subscription: Dict[str, Any]) -> bool:
        subscription_id = subscription.get("id")
        account = self._resolve_account(subscription.get("customer"), subscription)
        if account is None or not subscription_id:
            return False

        status = subscription.get("status") or "active"
        if self._held_by_other_subscription(account.id, subscription_id, status):
            return False

        price_id, unit_amount = subscription_price(subscription)
        period_start, period_end = subscription_period(subscription)
        self._persistence.upsert_subscription(
            SubscriptionRecord(
                account_id=account.id,
                plan_id=self._plans.plan_for_price(price_id, unit_amount),
                status=status,
                is_active=status in ACTIVE_STATUSES,
                stripe_customer_id=object_id(subscription.get("customer")),
                stripe_subscription_id=subscription_id,
                current_period_start=period_start,
                current_period_end=period_end,
                end_date=from_timestamp(subscription.get("cancel_at") or subscription.get("ended_at")),
                updated_at=self._clock(),
                updated_by=UPDATED_BY_WEBHOOK,
            )
        )
        self._invalidate(account.id)
        logger.info("Subscription %s for %s refreshed to %s", subscription_id, account.id, status)
        return True

    def _on_subscription_deleted(self, subscription: Dict[str, Any]) -> bool:
        subscription_id = subscription.get("id")
        if not subscription_id:
            return False
        now = self._clock()
        record = self._persistence.update_subscription(
            subscription_id,
            updated_by=UPDATED_BY_WEBHOOK,
            updated_at=now,
            status="canceled",
            is_active=False,
            end_date=now,
        )
        if record is None:
            logger.warning("Deletion for unknown subscription %s", subscription_id)
            return False
        self._invalidate(record.account_id)
        logger.info("Subscription %s canceled for %s", subscription_id, record.account_id)
        return True

    # ------------------------------------------------------------------
    def _resolve_account(self, customer: Any, stripe_object: Dict[str, Any]) -> Optional[Account]:
        customer_id = object_id(customer)
        if customer_id:
            account = self._persistence.get_profile_by_customer(customer_id)
            if account is not None:
                return account
        account_id = (stripe_object.get("metadata") or {}).get("account_id")
        if account_id:
            account = self._persistence.get_profile(account_id)
            if account is not None:
                return account
        logger.warning("No account mapped to Stripe customer %s; skipping", customer_id)
        return None

    def _held_by_other_subscription(self, account_id: str, subscription_id: str, status: str) -> bool:
        """True when the account is served by another active subscription and this
        one is no longer active, so a late event must not overwrite the record."""
        if status in ACTIVE_STATUSES:
            return False
        current = self._persistence.get_subscription(account_id)
        if (
            current is None
            or not current.is_active
            or not current.stripe_subscription_id
            or current.stripe_subscription_id == subscription_id
        ):
            return False
        logger.info(
            "Ignoring %s event for %s; account %s is held by active subscription %s",
            status,
            subscription_id,
            account_id,
            current.stripe_subscription_id,
        )
        return True

    def _invalidate(self, account_id: str) -> None:
        self._cache.delete(subscription_cache_key(account_id))
