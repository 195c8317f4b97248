"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

ZERO = Decimal("0")


class PaySection(str, Enum):
    """Catalog sections; the value is the persisted section key."""

    TAXABLE_EARNINGS = "TaxableEarnings"
    NON_TAXABLE_EARNINGS = "NonTaxableEarnings"
    INSURANCE_DEDUCTION = "InsuranceDeduction"
    INCOME_TAX_DEDUCTION = "IncomeTaxDeduction"
    EMPLOYER_INSURANCE = "EmployerInsurance"
    RETIREMENT = "Retirement"
    FUNDING_SOURCE = "FundingSource"

    @classmethod
    def parse(cls, key: str | PaySection) -> PaySection | None:
        """Return the section for ``key`` or None if it is not a known section."""
        try:
            return cls(key)
        except ValueError:
            return None


class InsuranceCategory(str, Enum):
    """Social insurance categories."""

    NATIONAL_PENSION = "national_pension"
    HEALTH_INSURANCE = "health_insurance"
    LONG_TERM_CARE = "long_term_care"
    EMPLOYMENT_INSURANCE = "employment_insurance"
    INDUSTRIAL_ACCIDENT = "industrial_accident"


@dataclass(frozen=True)
class AccrualPeriod:
    """The (year, month) a payroll entry is attributed to."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Accrual month must be 1..12, got {self.month}")
        if self.year < 1:
            raise ValueError(f"Accrual year must be positive, got {self.year}")

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass(frozen=True)
class CategoryRate:
    """Rates (fractions) and minimum floors for one insurance category."""

    employee_rate: Decimal
    employer_rate: Decimal
    min_base_amount: Decimal = ZERO
    min_premium: Decimal = ZERO


@dataclass(frozen=True)
class RateProfile:
    """A resolved insurance rate profile.

    ``profile_id`` is None for the built-in defaults, which are never persisted.
    """

    company_id: int
    rates: dict[InsuranceCategory, CategoryRate]
    effective_from: date
    effective_to: date | None = None
    profile_id: int | None = None

    @property
    def is_default(self) -> bool:
        return self.profile_id is None

    def rate(self, category: InsuranceCategory) -> CategoryRate:
        return self.rates[category]


@dataclass
class PayrollInputs:
    """Entered amounts and employee context for one payroll row."""

    section_values: dict[str, list[Decimal]] = field(default_factory=dict)
    estimated_annual_salary: Decimal = ZERO
    dependents: int | None = 1
    final_income_tax: Decimal = ZERO

    def get_value(self, section: str | PaySection, index: int) -> Decimal:
        values = self.section_values.get(_section_key(section), [])
        if 0 <= index < len(values):
            return values[index]
        return ZERO

    def set_value(self, section: str | PaySection, index: int, amount: Decimal) -> None:
        """Set the amount at a catalog position, padding the list with zeros."""
        if index < 0:
            raise IndexError(f"Pay item index must be non-negative, got {index}")
        values = self.section_values.setdefault(_section_key(section), [])
        while len(values) <= index:
            values.append(ZERO)
        values[index] = Decimal(amount)

    def subtotal(self, section: str | PaySection) -> Decimal:
        return sum(self.section_values.get(_section_key(section), []), ZERO)

    def copy(self) -> PayrollInputs:
        return PayrollInputs(
            section_values={k: list(v) for k, v in self.section_values.items()},
            estimated_annual_salary=self.estimated_annual_salary,
            dependents=self.dependents,
            final_income_tax=self.final_income_tax,
        )


@dataclass(frozen=True)
class PayrollBreakdown:
    """Full payroll breakdown for one employee and period."""

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

    @property
    def earnings_total(self) -> Decimal:
        return self.taxable_earnings_subtotal + self.non_taxable_earnings_subtotal

    def to_dict(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


def _section_key(section: str | PaySection) -> str:
    return section.value if isinstance(section, PaySection) else section
