"""Creates Stripe checkout and billing-portal sessions for plans and gifts."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..domain.errors import AuthRequired, InvalidRequest, NotConfigured, NotFound, StoreError
from ..domain.models import Account, CheckoutSession
from ..domain.ports.payments import PaymentGateway
from ..domain.ports.persistence import ProfileRepository
from .catalog_service import CatalogService

logger = logging.getLogger(__name__)

ITEM_TYPES = ("plan", "gift")
MAX_GIFT_QUANTITY = 99


class CheckoutService:
    """Builds hosted checkout sessions; never touches the subscription record."""

    def __init__(
        self,
        profiles: ProfileRepository,
        gateway: PaymentGateway,
        catalog: CatalogService,
        frontend_base_url: str,
    ) -> None:
        self._profiles = profiles
        self._gateway = gateway
        self._catalog = catalog
        self._frontend_base_url = frontend_base_url.rstrip("/")

    def create_checkout(
        self,
        account: Optional[Account],
        item_type: str,
        item_id: str,
        quantity: int = 1,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> CheckoutSession:
        """
        Open a Stripe checkout session for a plan or a gift.

        Args:
            account: Authenticated account placing the order
            item_type: ``"plan"`` or ``"gift"``
            item_id: Catalog identifier of the item
            quantity: Gift quantity; plans always use 1
            success_url: Redirect after payment, defaults to the frontend success page
            cancel_url: Redirect when the buyer backs out

        Returns:
            The session id and hosted checkout URL

        Raises:
            AuthRequired: No account was supplied
            InvalidRequest: Unknown item type or quantity out of range
            NotFound: The item is missing or inactive
            NotConfigured: The item has no Stripe price
            ProcessorError: Stripe rejected the request
        """
        if account is None:
            raise AuthRequired("Authentication required")
        if item_type not in ITEM_TYPES:
            raise InvalidRequest(f"Unsupported item type: {item_type}")

        if item_type == "plan":
            item = self._catalog.get_plan(item_id)
            mode = "subscription"
            quantity = 1
        else:
            item = self._catalog.get_gift(item_id)
            mode = "payment"
            if quantity < 1 or quantity > MAX_GIFT_QUANTITY:
                raise InvalidRequest(f"Quantity must be between 1 and {MAX_GIFT_QUANTITY}")

        if item is None or not item.is_active:
            raise NotFound(f"{item_type.capitalize()} '{item_id}' not found")
        if not item.stripe_price_id:
            raise NotConfigured(f"{item_type.capitalize()} '{item_id}' has no Stripe price configured")

        customer_id = self.ensure_customer(account)
        metadata: Dict[str, str] = {
            "account_id": account.id,
            "item_type": item_type,
            "item_id": item.id,
            "quantity": str(quantity),
            f"{item_type}_id": item.id,
        }
        session = self._gateway.create_checkout_session(
            mode=mode,
            customer_id=customer_id,
            price_id=item.stripe_price_id,
            quantity=quantity,
            success_url=success_url
            or f"{self._frontend_base_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{self._frontend_base_url}/payment-cancelled",
            metadata=metadata,
            client_reference_id=account.id,
        )
        logger.info(
            "Created %s checkout %s for account %s (%s x %s)",
            mode,
            session.get("id"),
            account.id,
            item.id,
            quantity,
        )
        return CheckoutSession(session_id=session["id"], url=session["url"])

    def ensure_customer(self, account: Account) -> str:
        """Return the account's Stripe customer id, creating the customer on first use.

        Two concurrent first checkouts may each create a customer; the later
        mapping wins and the orphan is harmless.
        """
        if account.stripe_customer_id:
            return account.stripe_customer_id

        customer_id = self._find_customer(account)
        if customer_id is None:
            customer = self._gateway.create_customer(
                account.email, account.name, {"account_id": account.id}
            )
            customer_id = customer["id"]
            logger.info("Created Stripe customer %s for account %s", customer_id, account.id)

        self._remember_customer(account, customer_id)
        return customer_id

    def create_portal_session(self, account: Optional[Account], return_url: Optional[str] = None) -> str:
        if account is None:
            raise AuthRequired("Authentication required")
        customer_id = account.stripe_customer_id or self._find_customer(account)
        if not customer_id:
            raise NotFound("No Stripe customer for this account")
        if not account.stripe_customer_id:
            self._remember_customer(account, customer_id)
        session = self._gateway.create_billing_portal_session(
            customer_id, return_url or f"{self._frontend_base_url}/account"
        )
        return session["url"]

    def _find_customer(self, account: Account) -> Optional[str]:
        if not account.email:
            return None
        customer = self._gateway.find_customer_by_email(account.email)
        return customer["id"] if customer else None

    def _remember_customer(self, account: Account, customer_id: str) -> None:
        try:
            self._profiles.set_customer_ref(account.id, customer_id)
        except StoreError as exc:
            logger.warning("Could not persist customer %s for %s: %s", customer_id, account.id, exc)
        account.stripe_customer_id = customer_id
