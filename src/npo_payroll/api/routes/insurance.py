"""Insurance rate profile endpoints."""

from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Path

from npo_payroll.api.dependencies import DbSession, get_company_or_404
from npo_payroll.api.schemas import (
    CategoryRateSchema,
    ErrorResponse,
    InsuranceProfileResponse,
    InsuranceProfileUpdate,
)
from npo_payroll.calculators.rate_resolver import InsuranceRateResolver, category_rate_from_percent
from npo_payroll.calculators.rounding import rate_to_percent
from npo_payroll.calculators.types import RateProfile

router = APIRouter(prefix="/companies/{company_id}/insurance-profile", tags=["insurance"])


def _to_response(profile: RateProfile) -> InsuranceProfileResponse:
    return InsuranceProfileResponse(
        company_id=profile.company_id,
        profile_id=profile.profile_id,
        is_default=profile.is_default,
        effective_from=profile.effective_from,
        effective_to=profile.effective_to,
        rates={
            category: CategoryRateSchema(
                employee_percent=rate_to_percent(rate.employee_rate),
                employer_percent=rate_to_percent(rate.employer_rate),
                min_base_amount=rate.min_base_amount,
                min_premium=rate.min_premium,
            )
            for category, rate in profile.rates.items()
        },
    )


@router.get(
    "",
    response_model=InsuranceProfileResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_insurance_profile(
    db: DbSession,
    company_id: Annotated[int, Path()],
) -> InsuranceProfileResponse:
    """Get the active profile, or the built-in defaults when none is stored."""
    await get_company_or_404(db, company_id)
    profile = await InsuranceRateResolver.for_session(db).resolve(company_id)
    return _to_response(profile)


@router.put(
    "",
    response_model=InsuranceProfileResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_insurance_profile(
    db: DbSession,
    payload: InsuranceProfileUpdate,
    company_id: Annotated[int, Path()],
) -> InsuranceProfileResponse:
    """Update the active profile in place, creating it on first save.

    Percentages are rounded to three decimal places before being stored.
    """
    await get_company_or_404(db, company_id)
    resolver = InsuranceRateResolver.for_session(db)
    current = await resolver.resolve(company_id)

    profile = RateProfile(
        company_id=company_id,
        rates={
            category: category_rate_from_percent(
                rate.employee_percent,
                rate.employer_percent,
                rate.min_base_amount,
                rate.min_premium,
            )
            for category, rate in payload.rates.items()
        },
        effective_from=(
            payload.effective_from
            or (current.effective_from if not current.is_default else None)
            or datetime.now(timezone.utc).date()
        ),
        profile_id=current.profile_id,
    )
    saved = await resolver.save(profile)
    return _to_response(saved)
