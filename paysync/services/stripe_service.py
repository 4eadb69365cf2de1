"""Stripe payment integration service."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from ..domain.errors import BadSignature, ConfigurationError, MalformedPayload, ProcessorError
from ..domain.ports.payments import PaymentGateway

logger = logging.getLogger(__name__)


def _to_dict(obj: Any) -> Dict[str, Any]:
    """Flatten a Stripe response into plain, JSON-shaped dictionaries."""
    if obj is None:
        return {}
    if isinstance(obj, stripe.StripeObject):
        return json.loads(str(obj))
    return dict(obj)


class StripeService(PaymentGateway):
    """Thin adapter over the Stripe SDK used by checkout, reconciliation and webhooks."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        api_version: Optional[str] = None,
        signature_tolerance: int = 300,
    ) -> None:
        if not secret_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not configured")
        if not webhook_secret:
            raise ConfigurationError("STRIPE_WEBHOOK_SECRET is not configured")
        stripe.api_key = secret_key
        if api_version:
            stripe.api_version = api_version
        self._webhook_secret = webhook_secret
        self._signature_tolerance = signature_tolerance

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            customers = stripe.Customer.list(email=email, limit=1)
        except stripe.StripeError as exc:
            logger.error("Failed to look up Stripe customer by email: %s", exc)
            raise ProcessorError(f"Failed to look up customer: {exc}") from exc
        if not customers.data:
            return None
        return _to_dict(customers.data[0])

    def create_customer(
        self, email: Optional[str], name: Optional[str], metadata: Dict[str, str]
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email
        if name:
            params["name"] = name
        try:
            customer = stripe.Customer.create(**params)
        except stripe.StripeError as exc:
            logger.error("Failed to create Stripe customer: %s", exc)
            raise ProcessorError(f"Failed to create customer: {exc}") from exc
        return _to_dict(customer)

    # ------------------------------------------------------------------
    # Checkout and portal
    # ------------------------------------------------------------------
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
        params: Dict[str, Any] = {
            "mode": mode,
            "customer": customer_id,
            "line_items": [{"price": price_id, "quantity": quantity}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
            "client_reference_id": client_reference_id,
        }
        if mode == "subscription":
            # Copied onto the subscription so later subscription events carry it too.
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["payment_intent_data"] = {"metadata": metadata}
        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.InvalidRequestError as exc:
            raise ProcessorError(f"Invalid checkout request: {exc}") from exc
        except stripe.StripeError as exc:
            logger.error("Failed to create checkout session: %s", exc)
            raise ProcessorError(f"Failed to create checkout session: {exc}") from exc
        return _to_dict(session)

    def create_billing_portal_session(self, customer_id: str, return_url: str) -> Dict[str, Any]:
        try:
            session = stripe.billing_portal.Session.create(customer=customer_id, return_url=return_url)
        except stripe.StripeError as exc:
            logger.error("Failed to create billing portal session: %s", exc)
            raise ProcessorError(f"Failed to create billing portal session: {exc}") from exc
        return _to_dict(session)

    # ------------------------------------------------------------------
    # Subscriptions and payments
    # ------------------------------------------------------------------
    def list_active_subscriptions(self, customer_id: str, limit: int = 1) -> List[Dict[str, Any]]:
        try:
            subscriptions = stripe.Subscription.list(
                customer=customer_id,
                status="active",
                limit=limit,
            )
        except stripe.StripeError as exc:
            logger.warning("Failed to list subscriptions for %s: %s", customer_id, exc)
            raise ProcessorError(f"Failed to list subscriptions: {exc}") from exc
        return [_to_dict(item) for item in subscriptions.data]

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve subscription %s: %s", subscription_id, exc)
            raise ProcessorError(f"Failed to retrieve subscription: {exc}") from exc
        return _to_dict(subscription)

    def retrieve_payment_intent(self, payment_intent_id: str) -> Dict[str, Any]:
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as exc:
            logger.error("Failed to retrieve payment intent %s: %s", payment_intent_id, exc)
            raise ProcessorError(f"Failed to retrieve payment intent: {exc}") from exc
        return _to_dict(intent)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------
    def construct_event(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not signature:
            raise BadSignature("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload("Webhook body is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self._signature_tolerance
            )
        except stripe.SignatureVerificationError as exc:
            raise BadSignature("Invalid webhook signature") from exc
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise MalformedPayload("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict) or not event.get("type"):
            raise MalformedPayload("Webhook body is not a Stripe event")
        return event
