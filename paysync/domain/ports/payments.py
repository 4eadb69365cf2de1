from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol


class PaymentGateway(Protocol):
    """The Stripe API surface consumed by the payment core.

    Every method returns plain dictionaries shaped like Stripe's JSON objects
    and raises ``ProcessorError`` on API failure.
    """

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        ...

    def create_customer(
        self, email: Optional[str], name: Optional[str], metadata: Dict[str, str]
    ) -> Dict[str, Any]:
        ...

    def create_checkout_session(
        self,
        *,
        mode: str,
        customer_id: str,
        price_id: str,
        quantity: int,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        client_reference_id: str,
    ) -> Dict[str, Any]:
        ...

    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        ...

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        ...

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        ...

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        ...

    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        """Verify ``signature`` and decode the event; raises BadSignature/MalformedPayload."""
        ...
