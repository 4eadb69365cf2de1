"""Pydantic schemas for checkout and billing portal endpoints."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    """Request schema for creating a checkout session."""

    item_type: Literal["plan", "gift"]
    item_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    quantity: int = 1
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutResponse(BaseModel):
    session_id: str = Field(..., alias="sessionId")
    url: str

    model_config = ConfigDict(populate_by_name=True)


class BillingPortalRequest(BaseModel):
    return_url: Optional[str] = None


class BillingPortalResponse(BaseModel):
    url: str
