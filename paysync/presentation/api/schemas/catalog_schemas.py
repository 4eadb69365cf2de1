"""Pydantic schemas for the plan and gift catalog and the purchased gift ledger."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ....domain.models import Gift, Plan, PurchasedGift


class PlanResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    price: Decimal
    duration: str
    features: List[str]
    display_order: int = Field(default=0, alias="displayOrder")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: Plan) -> "PlanResponse":
        return cls(
            id=plan.id,
            name=plan.name,
            description=plan.description,
            price=plan.price,
            duration=plan.duration,
            features=list(plan.features),
            display_order=plan.display_order,
        )


class GiftResponse(BaseModel):
    id: str
    name: str
    emoji: str
    price: Decimal

    @classmethod
    def from_gift(cls, gift: Gift) -> "GiftResponse":
        return cls(id=gift.id, name=gift.name, emoji=gift.emoji, price=gift.price)


class PurchasedGiftResponse(BaseModel):
    id: int
    gift_id: str = Field(..., alias="giftId")
    quantity: int
    price_paid: Decimal = Field(..., alias="pricePaid")
    purchased_at: datetime = Field(..., alias="purchasedAt")
    used_in_chat_message_id: Optional[str] = Field(default=None, alias="usedInChatMessageId")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_purchase(cls, purchase: PurchasedGift) -> "PurchasedGiftResponse":
        return cls(
            id=purchase.id,
            gift_id=purchase.gift_id,
            quantity=purchase.quantity,
            price_paid=purchase.price_paid,
            purchased_at=purchase.purchased_at,
            used_in_chat_message_id=purchase.used_in_chat_message_id,
        )


class UseGiftRequest(BaseModel):
    message_id: str = Field(..., min_length=1)


class CatalogDocument(BaseModel):
    """Same shape as the file read by ``scripts/seed_catalog.py``."""

    plans: List[Dict[str, Any]] = Field(default_factory=list)
    gifts: List[Dict[str, Any]] = Field(default_factory=list)


class CatalogSeedResponse(BaseModel):
    plans: int
    gifts: int
