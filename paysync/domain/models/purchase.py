from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


@dataclass(slots=True)
class PurchasedGift:
    id: int
    account_id: str
    gift_id: str
    quantity: int
    price_paid: Decimal
    purchased_at: datetime
    stripe_payment_ref: Optional[str]
    used_in_chat_message_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(slots=True, frozen=True)
class WebhookResult:
    event_id: Optional[str]
    event_type: str
    handled: bool
