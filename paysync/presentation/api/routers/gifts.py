"""Purchased gift ledger endpoints."""

from typing import List

from fastapi import APIRouter, Depends

from ....core.dependencies import get_gift_service
from ....domain.models import Account
from ....services.gift_service import GiftLedgerService
from ..dependencies import require_account
from ..schemas.catalog_schemas import PurchasedGiftResponse, UseGiftRequest

router = APIRouter(prefix="/api/gifts/purchased", tags=["gifts"])


@router.get("", response_model=List[PurchasedGiftResponse])
def list_purchased_gifts(
    account: Account = Depends(require_account),
    gift_service: GiftLedgerService = Depends(get_gift_service),
) -> List[PurchasedGiftResponse]:
    return [PurchasedGiftResponse.from_purchase(item) for item in gift_service.list_purchased_gifts(account)]


@router.post("/{purchase_id}/use", response_model=PurchasedGiftResponse)
def use_purchased_gift(
    purchase_id: int,
    payload: UseGiftRequest,
    account: Account = Depends(require_account),
    gift_service: GiftLedgerService = Depends(get_gift_service),
) -> PurchasedGiftResponse:
    """Link a purchased gift to the chat message that delivered it."""
    purchase = gift_service.mark_gift_used(account, purchase_id, payload.message_id)
    return PurchasedGiftResponse.from_purchase(purchase)
