"""Payroll draft and calculation endpoints."""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.api.dependencies import DbSession, TaxTable, get_company_or_404
from npo_payroll.api.schemas import (
    BreakdownResponse,
    CalculateRequest,
    DraftPayload,
    DraftResponse,
    ErrorResponse,
)
from npo_payroll.calculators.line_calculator import PayrollLineCalculator
from npo_payroll.calculators.rate_resolver import InsuranceRateResolver
from npo_payroll.calculators.types import ZERO, AccrualPeriod, PayrollInputs
from npo_payroll.services.draft_store import DraftKey, DraftSnapshot, PayrollDraftStore
from npo_payroll.services.employee_directory import EmployeeDirectory, EmployeeRef

router = APIRouter(prefix="/companies/{company_id}", tags=["drafts"])

CompanyId = Annotated[int, Path()]
EmployeeId = Annotated[int, Path()]
Year = Annotated[int, Path(ge=1)]
Month = Annotated[int, Path(ge=1, le=12)]


async def _get_employee_or_404(db: AsyncSession, company_id: int, employee_id: int) -> EmployeeRef:
    employee = await EmployeeDirectory(db).get_employee(company_id, employee_id)
    if employee is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Employee not found",
        )
    return employee


def _to_response(snapshot: DraftSnapshot) -> DraftResponse:
    key = snapshot.key
    return DraftResponse(
        company_id=key.company_id,
        employee_id=key.employee_id,
        accrual_year=key.accrual_year,
        accrual_month=key.accrual_month,
        funding_source=snapshot.funding_source,
        estimated_annual_salary=snapshot.estimated_annual_salary,
        final_income_tax=snapshot.final_income_tax,
        pay_item_values=snapshot.pay_item_values,
        updated_at=snapshot.updated_at,
    )


# ============================================================================
# Drafts
# ============================================================================


@router.get(
    "/drafts/{employee_id}/{year}/{month}",
    response_model=DraftResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def get_draft(
    db: DbSession,
    company_id: CompanyId,
    employee_id: EmployeeId,
    year: Year,
    month: Month,
) -> DraftResponse:
    """Get the stored draft of an employee for an accrual month."""
    await get_company_or_404(db, company_id)
    snapshot = await PayrollDraftStore(db).load(DraftKey(company_id, employee_id, year, month))
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Draft not found",
        )
    return _to_response(snapshot)


@router.put(
    "/drafts/{employee_id}/{year}/{month}",
    response_model=DraftResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def save_draft(
    db: DbSession,
    payload: DraftPayload,
    company_id: CompanyId,
    employee_id: EmployeeId,
    year: Year,
    month: Month,
) -> DraftResponse:
    """Create or replace the draft of an employee for an accrual month."""
    await get_company_or_404(db, company_id)
    await _get_employee_or_404(db, company_id, employee_id)

    snapshot = DraftSnapshot(
        key=DraftKey(company_id, employee_id, year, month),
        funding_source=payload.funding_source,
        estimated_annual_salary=payload.estimated_annual_salary,
        final_income_tax=payload.final_income_tax,
        pay_item_values=payload.pay_item_values,
    )
    store = PayrollDraftStore(db)
    async with store.unit_of_work():
        await store.save(snapshot)
    return _to_response(snapshot)


@router.delete(
    "/drafts/{employee_id}/{year}/{month}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def delete_draft(
    db: DbSession,
    company_id: CompanyId,
    employee_id: EmployeeId,
    year: Year,
    month: Month,
) -> Response:
    """Delete the draft of an employee for an accrual month."""
    await get_company_or_404(db, company_id)
    store = PayrollDraftStore(db)
    async with store.unit_of_work():
        deleted = await store.delete(DraftKey(company_id, employee_id, year, month))
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Draft not found",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/drafts/{year}/{month}",
    response_model=list[DraftResponse],
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def list_drafts(
    db: DbSession,
    company_id: CompanyId,
    year: Year,
    month: Month,
) -> list[DraftResponse]:
    """List every draft of a company for an accrual month."""
    await get_company_or_404(db, company_id)
    snapshots = await PayrollDraftStore(db).list_for_period(company_id, AccrualPeriod(year, month))
    return [_to_response(s) for s in snapshots]


# ============================================================================
# Calculation preview
# ============================================================================


@router.post(
    "/calculate",
    response_model=BreakdownResponse,
    responses={404: {"model": ErrorResponse}},
)
async def calculate_breakdown(
    db: DbSession,
    tax_table: TaxTable,
    payload: CalculateRequest,
    company_id: CompanyId,
) -> BreakdownResponse:
    """Compute a payroll breakdown without storing anything."""
    await get_company_or_404(db, company_id)

    salary = payload.estimated_annual_salary
    dependents = payload.dependents
    if payload.employee_id is not None:
        employee = await _get_employee_or_404(db, company_id, payload.employee_id)
        if salary is None:
            salary = employee.estimated_annual_salary
        if dependents is None:
            dependents = employee.dependents

    inputs = PayrollInputs(
        section_values={k: list(v) for k, v in payload.pay_item_values.items()},
        estimated_annual_salary=salary or ZERO,
        dependents=dependents or 1,
        final_income_tax=payload.final_income_tax,
    )
    profile = await InsuranceRateResolver.for_session(db).resolve(company_id)
    breakdown = PayrollLineCalculator(tax_table).calculate(inputs, profile)
    return BreakdownResponse(**breakdown.to_dict(), tax_table_fallback=tax_table.is_fallback)
