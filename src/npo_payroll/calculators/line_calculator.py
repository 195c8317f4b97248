"""Per-employee payroll breakdown from entered amounts, rates and tax table."""

from __future__ import annotations

from decimal import Decimal

from npo_payroll.calculators.rounding import round_toward_zero
from npo_payroll.calculators.tax_table import MONTHS_PER_YEAR, TaxBracketTable
from npo_payroll.calculators.types import (
    InsuranceCategory,
    PayrollBreakdown,
    PayrollInputs,
    PaySection,
    RateProfile,
)

LOCAL_INCOME_TAX_RATE = Decimal("0.1")


class PayrollLineCalculator:
    """Computes a full payroll breakdown for one employee and period.

    Pipeline (stable order):
    1) Taxable and non-taxable earnings subtotals
    2) Employee premiums on taxable earnings, truncated toward zero
    3) Advisory income tax lookups (estimated salary, taxable earnings x 12)
    4) Deducted income tax is the manually entered final figure, plus 10% local tax
    5) Employer premiums; industrial accident is charged on all earnings
    6) Net pay and total employer burden

    ``calculate`` is pure: the same inputs and profile always give the same
    breakdown, and nothing is cached between calls.
    """

    def __init__(self, tax_table: TaxBracketTable):
        self.tax_table = tax_table

    def calculate(self, inputs: PayrollInputs, profile: RateProfile) -> PayrollBreakdown:
        taxable = inputs.subtotal(PaySection.TAXABLE_EARNINGS)
        non_taxable = inputs.subtotal(PaySection.NON_TAXABLE_EARNINGS)

        def employee_premium(category: InsuranceCategory) -> Decimal:
            return round_toward_zero(taxable * profile.rate(category).employee_rate)

        def employer_premium(category: InsuranceCategory, base: Decimal) -> Decimal:
            return round_toward_zero(base * profile.rate(category).employer_rate)

        ee_pension = employee_premium(InsuranceCategory.NATIONAL_PENSION)
        ee_health = employee_premium(InsuranceCategory.HEALTH_INSURANCE)
        ee_long_term_care = employee_premium(InsuranceCategory.LONG_TERM_CARE)
        ee_employment = employee_premium(InsuranceCategory.EMPLOYMENT_INSURANCE)
        insurance_deduction_subtotal = (
            ee_pension
            + ee_health
            + ee_long_term_care
            + ee_employment
            + inputs.subtotal(PaySection.INSURANCE_DEDUCTION)
        )

        income_tax_estimated = self.tax_table.lookup(
            inputs.estimated_annual_salary, inputs.dependents
        )
        income_tax_taxable = self.tax_table.lookup(taxable * MONTHS_PER_YEAR, inputs.dependents)

        income_tax = inputs.final_income_tax
        local_income_tax = round_toward_zero(income_tax * LOCAL_INCOME_TAX_RATE)
        income_tax_subtotal = (
            income_tax + local_income_tax + inputs.subtotal(PaySection.INCOME_TAX_DEDUCTION)
        )

        er_pension = employer_premium(InsuranceCategory.NATIONAL_PENSION, taxable)
        er_health = employer_premium(InsuranceCategory.HEALTH_INSURANCE, taxable)
        er_long_term_care = employer_premium(InsuranceCategory.LONG_TERM_CARE, taxable)
        er_employment = employer_premium(InsuranceCategory.EMPLOYMENT_INSURANCE, taxable)
        industrial_accident = employer_premium(
            InsuranceCategory.INDUSTRIAL_ACCIDENT, taxable + non_taxable
        )
        employer_insurance_subtotal = (
            er_pension
            + er_health
            + er_long_term_care
            + er_employment
            + industrial_accident
            + inputs.subtotal(PaySection.EMPLOYER_INSURANCE)
        )

        retirement_subtotal = inputs.subtotal(PaySection.RETIREMENT)
        net_pay = taxable + non_taxable - insurance_deduction_subtotal - income_tax_subtotal
        employer_total_burden = net_pay + employer_insurance_subtotal + retirement_subtotal

        return PayrollBreakdown(
            taxable_earnings_subtotal=taxable,
            non_taxable_earnings_subtotal=non_taxable,
            employee_national_pension=ee_pension,
            employee_health_insurance=ee_health,
            employee_long_term_care=ee_long_term_care,
            employee_employment_insurance=ee_employment,
            insurance_deduction_subtotal=insurance_deduction_subtotal,
            income_tax_estimated=income_tax_estimated,
            income_tax_taxable=income_tax_taxable,
            income_tax=income_tax,
            local_income_tax=local_income_tax,
            income_tax_subtotal=income_tax_subtotal,
            employer_national_pension=er_pension,
            employer_health_insurance=er_health,
            employer_long_term_care=er_long_term_care,
            employer_employment_insurance=er_employment,
            industrial_accident_insurance=industrial_accident,
            employer_insurance_subtotal=employer_insurance_subtotal,
            retirement_subtotal=retirement_subtotal,
            net_pay=net_pay,
            employer_total_burden=employer_total_burden,
        )
