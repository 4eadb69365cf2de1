"""Pydantic schemas for subscription API endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ....domain.models import PlanStatus


class PlanStatusResponse(BaseModel):
    """Current plan of the caller as merged from Stripe and the local record."""

    plan_id: str = Field(..., alias="planId")
    is_active: bool = Field(..., alias="isActive")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    period_end: Optional[datetime] = Field(default=None, alias="periodEnd")
    status: str
    degraded: bool = False

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_status(cls, status: PlanStatus) -> "PlanStatusResponse":
        return cls(
            plan_id=status.plan_id,
            is_active=status.is_active,
            end_date=status.end_date,
            period_end=status.period_end,
            status=status.status,
            degraded=status.degraded,
        )


class FeatureAccessResponse(BaseModel):
    plan_id: str = Field(..., alias="planId")
    feature: str
    allowed: bool

    model_config = ConfigDict(populate_by_name=True)
