"""Catalog router - unit types and optional features for the start checklist."""

from fastapi import APIRouter, Depends

from app.core.security import AuthenticatedUser, get_current_user
from app.models.enums import UnitType
from app.schemas.job import CatalogResponse, FeatureResponse
from app.services.catalog import FEATURES

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.get("", response_model=CatalogResponse)
async def get_catalog(
    current_user: AuthenticatedUser = Depends(get_current_user),
):
    """Unit types and features in display order."""
    return CatalogResponse(
        unit_types=list(UnitType),
        features=[
            FeatureResponse(
                key=f.key,
                label=f.label,
                compare_category=f.compare_category.key if f.compare_category else None,
                general_category=f.general_category.key if f.general_category else None,
            )
            for f in FEATURES
        ],
    )
