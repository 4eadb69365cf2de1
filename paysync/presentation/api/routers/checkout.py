"""Checkout and billing portal endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ....core.dependencies import get_checkout_service
from ....domain.errors import InvalidRequest
from ....domain.models import Account
from ....services.checkout_service import CheckoutService
from ..dependencies import optional_account, require_account
from ..schemas.checkout_schemas import (
    BillingPortalRequest,
    BillingPortalResponse,
    CheckoutRequest,
    CheckoutResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["checkout"])


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(
    payload: CheckoutRequest,
    account: Optional[Account] = Depends(optional_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> CheckoutResponse:
    """Open a Stripe checkout session for a plan or a gift."""
    if account is not None and payload.user_id and payload.user_id != account.id:
        logger.warning("Checkout body user %s does not match token account %s", payload.user_id, account.id)
        raise InvalidRequest("user_id does not match the authenticated account")
    session = checkout_service.create_checkout(
        account,
        item_type=payload.item_type,
        item_id=payload.item_id,
        quantity=payload.quantity,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    return CheckoutResponse(session_id=session.session_id, url=session.url)


@router.post("/billing-portal", response_model=BillingPortalResponse)
def create_billing_portal(
    payload: Optional[BillingPortalRequest] = None,
    account: Account = Depends(require_account),
    checkout_service: CheckoutService = Depends(get_checkout_service),
) -> BillingPortalResponse:
    return_url = payload.return_url if payload else None
    return BillingPortalResponse(url=checkout_service.create_portal_session(account, return_url))
