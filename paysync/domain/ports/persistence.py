from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from ..models import Account, Gift, Plan, PurchasedGift, SubscriptionRecord


class CatalogRepository(Protocol):
    """Read access to plans and gifts, plus the seeding writes."""

    def list_plans(self, include_inactive: bool = False) -> List[Plan]:
        ...

    def get_plan(self, plan_id: str) -> Optional[Plan]:
        ...

    def get_plan_by_price_ref(self, stripe_price_id: str) -> Optional[Plan]:
        ...

    def upsert_plan(self, plan: Plan) -> None:
        ...

    def list_gifts(self, include_inactive: bool = False) -> List[Gift]:
        ...

    def get_gift(self, gift_id: str) -> Optional[Gift]:
        ...

    def upsert_gift(self, gift: Gift) -> None:
        ...


class ProfileRepository(Protocol):
    """Local mirror of auth accounts and their Stripe customer mapping."""

    def get_profile(self, account_id: str) -> Optional[Account]:
        ...

    def get_profile_by_customer(self, stripe_customer_id: str) -> Optional[Account]:
        ...

    def upsert_profile(self, account: Account) -> Account:
        ...

    def set_customer_ref(self, account_id: str, stripe_customer_id: str) -> None:
        ...

    def has_admin_role(self, account_id: str) -> bool:
        ...


class SubscriptionRepository(Protocol):
    """Persistence functions related to the per-account subscription record."""

    def get_subscription(self, account_id: str) -> Optional[SubscriptionRecord]:
        ...

    def get_subscription_by_processor_ref(
        self, stripe_subscription_id: str
    ) -> Optional[SubscriptionRecord]:
        ...

    def upsert_subscription(self, record: SubscriptionRecord) -> SubscriptionRecord:
        ...

    def update_subscription(
        self,
        stripe_subscription_id: str,
        *,
        updated_by: str,
        status: Optional[str] = None,
        is_active: Optional[bool] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        plan_id: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Optional[SubscriptionRecord]:
        ...


class PurchasedGiftRepository(Protocol):
    """Append-only ledger of gift purchases."""

    def record_gift_purchase(
        self,
        account_id: str,
        gift_id: str,
        quantity: int,
        price_paid: Decimal,
        stripe_payment_ref: str,
        purchased_at: datetime,
    ) -> Optional[PurchasedGift]:
        ...

    def list_purchased_gifts(self, account_id: str) -> List[PurchasedGift]:
        ...

    def get_purchased_gift(self, purchase_id: int) -> Optional[PurchasedGift]:
        ...

    def mark_gift_used(self, purchase_id: int, message_id: str) -> Optional[PurchasedGift]:
        """Link the gift unless another message already holds it; ``None`` if one does."""
        ...


class PersistenceGateway(
    CatalogRepository,
    ProfileRepository,
    SubscriptionRepository,
    PurchasedGiftRepository,
    Protocol,
):
    """Composite gateway combining every persistence concern used by the app."""

    pass
