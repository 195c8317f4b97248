"""Pay item catalog endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, status

from npo_payroll.api.dependencies import DbSession
from npo_payroll.api.schemas import CatalogResponse, CatalogUpdate, ErrorResponse
from npo_payroll.calculators.types import PaySection
from npo_payroll.services.catalog_service import PayItemCatalog

router = APIRouter(prefix="/catalog", tags=["catalog"])


def _parse_section(section: str) -> PaySection:
    parsed = PaySection.parse(section)
    if parsed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown catalog section '{section}'",
        )
    return parsed


@router.get(
    "/{section}",
    response_model=CatalogResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_catalog_section(
    db: DbSession,
    section: Annotated[str, Path()],
) -> CatalogResponse:
    """Get the ordered item labels of a section."""
    parsed = _parse_section(section)
    items = await PayItemCatalog(db).get_items(parsed)
    return CatalogResponse(section=parsed, items=items)


@router.put(
    "/{section}",
    response_model=CatalogResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_catalog_section(
    db: DbSession,
    payload: CatalogUpdate,
    section: Annotated[str, Path()],
) -> CatalogResponse:
    """Replace the item labels of a section.

    Stored amounts are matched to labels by position, so reordering labels
    changes the meaning of amounts already entered.
    """
    parsed = _parse_section(section)
    items = await PayItemCatalog(db).save_items(parsed, payload.items)
    return CatalogResponse(section=parsed, items=items)
