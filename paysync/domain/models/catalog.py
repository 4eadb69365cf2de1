"""Read-mostly catalog reference data: plans and gifts."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

ADMIN_PLAN_ID = "admin"
FREE_PLAN_ID = "free"


@dataclass(slots=True)
class Plan:
    id: str
    name: str
    price: Decimal
    duration: str
    features: List[str] = field(default_factory=list)
    stripe_price_id: Optional[str] = None
    stripe_product_id: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    display_order: int = 0

    def has_feature(self, label: str) -> bool:
        wanted = label.strip().lower()
        return any(feature.strip().lower() == wanted for feature in self.features)


@dataclass(slots=True)
class Gift:
    id: str
    name: str
    price: Decimal
    emoji: str = ""
    stripe_price_id: Optional[str] = None
    is_active: bool = True
