"""Domain models for the paysync service."""

from .account import Account
from .catalog import ADMIN_PLAN_ID, FREE_PLAN_ID, Gift, Plan
from .purchase import CheckoutSession, PurchasedGift, WebhookResult
from .subscription import PlanStatus, SubscriptionRecord

__all__ = [
    "ADMIN_PLAN_ID",
    "Account",
    "CheckoutSession",
    "FREE_PLAN_ID",
    "Gift",
    "Plan",
    "PlanStatus",
    "PurchasedGift",
    "SubscriptionRecord",
    "WebhookResult",
]
