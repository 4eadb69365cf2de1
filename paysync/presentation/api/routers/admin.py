"""Operator endpoints."""

from fastapi import APIRouter, Depends

from ....core.dependencies import get_catalog_service
from ....domain.models import Account
from ....services.catalog_service import CatalogService
from ..dependencies import require_admin
from ..schemas.catalog_schemas import CatalogDocument, CatalogSeedResponse

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/catalog", response_model=CatalogSeedResponse)
def reseed_catalog(
    payload: CatalogDocument,
    account: Account = Depends(require_admin),
    catalog: CatalogService = Depends(get_catalog_service),
) -> CatalogSeedResponse:
    counts = catalog.reseed(payload.model_dump())
    return CatalogSeedResponse(**counts)
