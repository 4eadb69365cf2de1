from typing import List

from fastapi import APIRouter, Depends

from ....core.dependencies import get_catalog_service
from ....services.catalog_service import CatalogService
from ..schemas.catalog_schemas import GiftResponse, PlanResponse

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/plans", response_model=List[PlanResponse])
def list_plans(catalog: CatalogService = Depends(get_catalog_service)) -> List[PlanResponse]:
    return [PlanResponse.from_plan(plan) for plan in catalog.list_plans()]


@router.get("/gifts", response_model=List[GiftResponse])
def list_gifts(catalog: CatalogService = Depends(get_catalog_service)) -> List[GiftResponse]:
    return [GiftResponse.from_gift(gift) for gift in catalog.list_gifts()]
