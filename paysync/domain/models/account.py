"""Account domain model mirroring the external auth identity."""

from datetime import datetime, timezone
from typing import Optional


class Account:
    """
    Account entity referenced by every payment operation.

    Attributes:
        id: Identifier issued by the auth provider (token ``sub``)
        email: Account email address
        name: Display name, if known
        created_at: When the account was first seen; anchors the free trial
        stripe_customer_id: Stripe customer reference, once resolved
        is_admin: Administrator role flag stored on the profile
    """

    def __init__(
        self,
        id: str,
        email: Optional[str],
        name: Optional[str] = None,
        created_at: Optional[datetime] = None,
        stripe_customer_id: Optional[str] = None,
        is_admin: bool = False,
    ):
        self.id = id
        self.email = email
        self.name = name
        self.created_at = created_at or datetime.now(timezone.utc)
        self.stripe_customer_id = stripe_customer_id
        self.is_admin = is_admin

    def __repr__(self) -> str:
        return f"<Account id={self.id} email={self.email} admin={self.is_admin}>"
