"""Cached read access to the plan and gift catalog."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..domain.errors import InvalidRequest
from ..domain.models import Gift, Plan
from ..domain.ports.cache import Cache
from ..domain.ports.persistence import CatalogRepository

logger = logging.getLogger(__name__)

CATALOG_CACHE_PREFIX = "catalog:"
# Feature gates are derived from plan features and cached by the reconciler.
FEATURE_CACHE_PREFIX = "feature:"


class CatalogService:
    """Serves catalog lookups from the cache, falling back to the store."""

    def __init__(self, repository: CatalogRepository, cache: Cache, ttl_seconds: float = 3600) -> None:
        self._repository = repository
        self._cache = cache
        self._ttl = ttl_seconds

    def list_plans(self) -> List[Plan]:
        cached = self._cache.get("catalog:plans")
        if cached is not None:
            return cached
        plans = self._repository.list_plans()
        self._cache.set("catalog:plans", plans, self._ttl)
        return plans

    def list_gifts(self) -> List[Gift]:
        cached = self._cache.get("catalog:gifts")
        if cached is not None:
            return cached
        gifts = self._repository.list_gifts()
        self._cache.set("catalog:gifts", gifts, self._ttl)
        return gifts

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        key = f"catalog:plan:{plan_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        plan = self._repository.get_plan(plan_id)
        if plan is not None:
            self._cache.set(key, plan, self._ttl)
        return plan

    def get_gift(self, gift_id: str) -> Optional[Gift]:
        key = f"catalog:gift:{gift_id}"
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        gift = self._repository.get_gift(gift_id)
        if gift is not None:
            self._cache.set(key, gift, self._ttl)
        return gift

    def find_plan_by_price_ref(self, stripe_price_id: Optional[str]) -> Optional[Plan]:
        if not stripe_price_id:
            return None
        return self._repository.get_plan_by_price_ref(stripe_price_id)

    def invalidate(self) -> None:
        """Drop every cached value derived from the catalog."""
        dropped = self._cache.delete_prefix(CATALOG_CACHE_PREFIX) + self._cache.delete_prefix(FEATURE_CACHE_PREFIX)
        logger.info("Catalog cache invalidated (%s entries)", dropped)

    def reseed(self, data: Dict[str, Any]) -> Dict[str, int]:
        counts = seed_catalog(self._repository, data)
        self.invalidate()
        return counts


def seed_catalog(repository: CatalogRepository, data: Dict[str, Any]) -> Dict[str, int]:
    """Upsert the ``plans`` and ``gifts`` of a catalog document into the store.

    Prices are given in the major currency unit, e.g. ``"29.90"``.
    """
    counts = {"plans": 0, "gifts": 0}
    try:
        for order, item in enumerate(data.get("plans") or []):
            repository.upsert_plan(
                Plan(
                    id=item["id"],
                    name=item["name"],
                    price=Decimal(str(item["price"])),
                    duration=item.get("duration", "monthly"),
                    features=list(item.get("features") or []),
                    stripe_price_id=item.get("stripe_price_id"),
                    stripe_product_id=item.get("stripe_product_id"),
                    description=item.get("description"),
                    is_active=bool(item.get("is_active", True)),
                    display_order=int(item.get("display_order", order)),
                )
            )
            counts["plans"] += 1
        for item in data.get("gifts") or []:
            repository.upsert_gift(
                Gift(
                    id=item["id"],
                    name=item["name"],
                    price=Decimal(str(item["price"])),
                    emoji=item.get("emoji", ""),
                    stripe_price_id=item.get("stripe_price_id"),
                    is_active=bool(item.get("is_active", True)),
                )
            )
            counts["gifts"] += 1
    except (KeyError, ArithmeticError, ValueError) as exc:
        raise InvalidRequest(f"Malformed catalog entry: {exc}") from exc
    logger.info("Seeded %s plans and %s gifts", counts["plans"], counts["gifts"])
    return counts
