"""Helpers that read Stripe objects and map their prices onto catalog plans."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from ..domain.models import FREE_PLAN_ID
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)

BASIC_CEILING_CENTS = 4000
INTERMEDIATE_CEILING_CENTS = 9000


def bucket_plan_by_amount(unit_amount: Optional[int]) -> str:
    """Guess a plan id from a unit amount in cents.

    Only used when a Stripe price is missing from the catalog; remove once every
    plan row carries its ``stripe_price_id``.
    """
    if not unit_amount or unit_amount <= 0:
        return FREE_PLAN_ID
    if unit_amount < BASIC_CEILING_CENTS:
        return "basic"
    if unit_amount < INTERMEDIATE_CEILING_CENTS:
        return "intermediate"
    return "premium"


def cents_to_decimal(amount: Optional[int]) -> Decimal:
    return (Decimal(amount or 0) / Decimal(100)).quantize(Decimal("0.01"))


def from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    return items[0] if items else {}


def subscription_price(subscription: Dict[str, Any]) -> Tuple[Optional[str], Optional[int]]:
    price = _first_item(subscription).get("price") or subscription.get("plan") or {}
    if isinstance(price, str):
        return price, None
    return price.get("id"), price.get("unit_amount", price.get("amount"))


def subscription_period(subscription: Dict[str, Any]) -> Tuple[Optional[datetime], Optional[datetime]]:
    # Newer API versions only report the period on subscription items.
    item = _first_item(subscription)
    start = subscription.get("current_period_start") or item.get("current_period_start")
    end = subscription.get("current_period_end") or item.get("current_period_end")
    return from_timestamp(start), from_timestamp(end)


def invoice_price(invoice: Dict[str, Any]) -> Tuple[Optional[str], Optional[int]]:
    lines = (invoice.get("lines") or {}).get("data") or []
    if not lines:
        return None, None
    line = lines[0]
    price_details = (line.get("pricing") or {}).get("price_details") or {}
    price = line.get("price") or line.get("plan") or price_details.get("price") or {}
    if isinstance(price, str):
        return price, None
    return price.get("id"), price.get("unit_amount", price.get("amount"))


def invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    subscription = invoice.get("subscription")
    if subscription is None:
        details = (invoice.get("parent") or {}).get("subscription_details") or {}
        subscription = details.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id")
    return subscription


def object_id(value: Any) -> Optional[str]:
    """Stripe fields may hold either an id or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class PlanMapper:
    """Maps a Stripe price onto a catalog plan id."""

    def __init__(self, catalog: CatalogService) -> None:
        self._catalog = catalog

    def plan_for_price(self, price_id: Optional[str], unit_amount: Optional[int]) -> str:
        plan = self._catalog.find_plan_by_price_ref(price_id)
        if plan is not None:
            return plan.id
        plan_id = bucket_plan_by_amount(unit_amount)
        logger.warning(
            "No catalog plan for Stripe price %s; bucketed amount %s into %s",
            price_id,
            unit_amount,
            plan_id,
        )
        return plan_id
