"""Purchased gift ledger."""

from __future__ import annotations

import logging
from typing import List

from ..domain.errors import InvalidRequest, NotFound
from ..domain.models import Account, PurchasedGift
from ..domain.ports.persistence import PurchasedGiftRepository

logger = logging.getLogger(__name__)


class GiftLedgerService:
    def __init__(self, repository: PurchasedGiftRepository) -> None:
        self._repository = repository

    def list_purchased_gifts(self, account: Account) -> List[PurchasedGift]:
        return self._repository.list_purchased_gifts(account.id)

    def mark_gift_used(self, account: Account, purchase_id: int, message_id: str) -> PurchasedGift:
        """Attach a purchased gift to the chat message it was sent with."""
        if not message_id or not message_id.strip():
            raise InvalidRequest("message_id is required")
        purchase = self._repository.get_purchased_gift(purchase_id)
        if purchase is None or purchase.account_id != account.id:
            raise NotFound(f"Purchased gift {purchase_id} not found")

        if purchase.used_in_chat_message_id == message_id:
            return purchase
        if purchase.used_in_chat_message_id:
            raise InvalidRequest(f"Purchased gift {purchase_id} was already used")

        used = self._repository.mark_gift_used(purchase_id, message_id)
        if used is None:
            raise InvalidRequest(f"Purchased gift {purchase_id} was already used")
        logger.info("Gift purchase %s used in message %s", purchase_id, message_id)
        return used
