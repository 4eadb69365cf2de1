"""Subscription record and the reconciled plan answer."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from .catalog import ADMIN_PLAN_ID, FREE_PLAN_ID

SUBSCRIPTION_STATUSES = (
    "free",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "inactive",
    "error",
)
ACTIVE_STATUSES = ("active", "trialing")

UPDATED_BY_WEBHOOK = "webhook"
UPDATED_BY_RECONCILER = "reconciler"


class SubscriptionRecord:
    """
    Local subscription row, one per account, upserted on ``account_id``.

    Attributes:
        account_id: Owning account
        plan_id: Catalog plan id
        status: One of ``SUBSCRIPTION_STATUSES``; Stripe statuses are copied verbatim
        is_active: Whether the plan currently entitles the account
        stripe_customer_id: Stripe customer reference
        stripe_subscription_id: Stripe subscription reference (None for trials)
        current_period_start: Start of current billing period
        current_period_end: End of current billing period
        end_date: Hard cancellation boundary
        updated_at: Last write timestamp
        updated_by: Writer of the last change (``webhook`` or ``reconciler``)
    """

    def __init__(
        self,
        account_id: str,
        plan_id: str,
        status: str,
        is_active: bool,
        stripe_customer_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        current_period_start: Optional[datetime] = None,
        current_period_end: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        updated_by: str = UPDATED_BY_RECONCILER,
    ):
        self.account_id = account_id
        self.plan_id = plan_id
        self.status = status
        self.is_active = is_active
        self.stripe_customer_id = stripe_customer_id
        self.stripe_subscription_id = stripe_subscription_id
        self.current_period_start = current_period_start
        self.current_period_end = current_period_end
        self.end_date = end_date
        self.updated_at = updated_at
        self.updated_by = updated_by

    def is_paid(self) -> bool:
        """Check if the record is backed by a Stripe subscription."""
        return bool(self.stripe_subscription_id) or self.plan_id != FREE_PLAN_ID

    def __repr__(self) -> str:
        return (
            f"<SubscriptionRecord account_id={self.account_id} plan_id={self.plan_id} "
            f"status={self.status} active={self.is_active}>"
        )


@dataclass(slots=True, frozen=True)
class PlanStatus:
    """Reconciled answer for "which plan does this account hold right now"."""

    plan_id: str
    is_active: bool
    status: str
    period_end: Optional[datetime] = None
    end_date: Optional[datetime] = None
    degraded: bool = False

    @classmethod
    def admin(cls) -> "PlanStatus":
        return cls(plan_id=ADMIN_PLAN_ID, is_active=True, status="active")

    @classmethod
    def free_inactive(cls, *, degraded: bool = False) -> "PlanStatus":
        return cls(plan_id=FREE_PLAN_ID, is_active=False, status="inactive", degraded=degraded)

    def as_degraded(self) -> "PlanStatus":
        return replace(self, degraded=True)
