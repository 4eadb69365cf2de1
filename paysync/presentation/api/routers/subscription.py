"""Endpoints reporting the caller's plan and feature entitlements."""

from fastapi import APIRouter, Depends

from ....core.dependencies import get_subscription_reconciler
from ....domain.models import Account
from ....services.subscription_service import SubscriptionReconciler
from ..dependencies import require_account
from ..schemas.subscription_schemas import FeatureAccessResponse, PlanStatusResponse

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@router.get("", response_model=PlanStatusResponse)
def get_subscription(
    force_refresh: bool = False,
    account: Account = Depends(require_account),
    reconciler: SubscriptionReconciler = Depends(get_subscription_reconciler),
) -> PlanStatusResponse:
    """Return the caller's current plan; never fails once authenticated."""
    status = reconciler.get_current_plan(account.id, force_refresh=force_refresh)
    return PlanStatusResponse.from_status(status)


@router.get("/features/{feature}", response_model=FeatureAccessResponse)
def get_feature_access(
    feature: str,
    account: Account = Depends(require_account),
    reconciler: SubscriptionReconciler = Depends(get_subscription_reconciler),
) -> FeatureAccessResponse:
    status = reconciler.get_current_plan(account.id)
    allowed = status.is_active and reconciler.can_use_feature(status.plan_id, feature)
    return FeatureAccessResponse(plan_id=status.plan_id, feature=feature, allowed=allowed)
