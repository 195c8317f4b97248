"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from npo_payroll.calculators.types import InsuranceCategory, PaySection

# Same bounds as the Numeric(18, 2) amount columns; NaN and infinity are rejected
Amount = Annotated[Decimal, Field(max_digits=18, decimal_places=2)]


def _check_sections(values: dict[str, list[Amount]]) -> dict[str, list[Amount]]:
    unknown = [key for key in values if PaySection.parse(key) is None]
    if unknown:
        raise ValueError(f"Unknown pay sections: {', '.join(sorted(unknown))}")
    return values


# ============================================================================
# Common
# ============================================================================


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str | None = None


# ============================================================================
# Catalog schemas
# ============================================================================


class CatalogResponse(BaseModel):
    section: PaySection
    items: list[str]


class CatalogUpdate(BaseModel):
    items: list[str]


# ============================================================================
# Insurance profile schemas
# ============================================================================


class CategoryRateSchema(BaseModel):
    """Rates of one category, in percent (4.5 means 4.5%)."""

    employee_percent: Decimal = Field(ge=0, le=100)
    employer_percent: Decimal = Field(ge=0, le=100)
    min_base_amount: Decimal = Field(default=Decimal("0"), ge=0)
    min_premium: Decimal = Field(default=Decimal("0"), ge=0)


class InsuranceProfileResponse(BaseModel):
    company_id: int
    profile_id: int | None
    is_default: bool
    effective_from: date
    effective_to: date | None = None
    rates: dict[InsuranceCategory, CategoryRateSchema]


class InsuranceProfileUpdate(BaseModel):
    effective_from: date | None = None
    rates: dict[InsuranceCategory, CategoryRateSchema]

    @field_validator("rates")
    @classmethod
    def all_categories_present(
        cls, rates: dict[InsuranceCategory, CategoryRateSchema]
    ) -> dict[InsuranceCategory, CategoryRateSchema]:
        missing = [c.value for c in InsuranceCategory if c not in rates]
        if missing:
            raise ValueError(f"Missing insurance categories: {', '.join(missing)}")
        return rates


# ============================================================================
# Draft schemas
# ============================================================================


class DraftPayload(BaseModel):
    """Schema for saving a payroll draft."""

    funding_source: str = ""
    estimated_annual_salary: Amount = Field(default=Decimal("0"), ge=0)
    final_income_tax: Amount = Decimal("0")
    pay_item_values: dict[str, list[Amount]] = Field(default_factory=dict)

    @field_validator("pay_item_values")
    @classmethod
    def known_sections(cls, values: dict[str, list[Amount]]) -> dict[str, list[Amount]]:
        return _check_sections(values)


class DraftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    company_id: int
    employee_id: int
    accrual_year: int
    accrual_month: int
    funding_source: str = ""
    estimated_annual_salary: Decimal = Decimal("0")
    final_income_tax: Decimal = Decimal("0")
    pay_item_values: dict[str, list[Decimal]] = Field(default_factory=dict)
    updated_at: datetime | None = None


# ============================================================================
# Calculation schemas
# ============================================================================


class CalculateRequest(BaseModel):
    """Inputs for a breakdown preview.

    When ``employee_id`` is given, the employee's salary estimate and
    dependents fill in whatever is omitted here.
    """

    employee_id: int | None = None
    pay_item_values: dict[str, list[Amount]] = Field(default_factory=dict)
    estimated_annual_salary: Amount | None = Field(default=None, ge=0)
    dependents: int | None = None
    final_income_tax: Amount = Decimal("0")

    @field_validator("pay_item_values")
    @classmethod
    def known_sections(cls, values: dict[str, list[Amount]]) -> dict[str, list[Amount]]:
        return _check_sections(values)


class BreakdownResponse(BaseModel):
    taxable_earnings_subtotal: Decimal
    non_taxable_earnings_subtotal: Decimal
    employee_national_pension: Decimal
    employee_health_insurance: Decimal
    employee_long_term_care: Decimal
    employee_employment_insurance: Decimal
    insurance_deduction_subtotal: Decimal
    income_tax_estimated: Decimal
    income_tax_taxable: Decimal
    income_tax: Decimal
    local_income_tax: Decimal
    income_tax_subtotal: Decimal
    employer_national_pension: Decimal
    employer_health_insurance: Decimal
    employer_long_term_care: Decimal
    employer_employment_insurance: Decimal
    industrial_accident_insurance: Decimal
    employer_insurance_subtotal: Decimal
    retirement_subtotal: Decimal
    net_pay: Decimal
    employer_total_burden: Decimal
    tax_table_fallback: bool = False
