"""Payroll calculation engine."""

from npo_payroll.calculators.line_calculator import PayrollLineCalculator
from npo_payroll.calculators.rate_resolver import InsuranceRateDefaults, InsuranceRateResolver
from npo_payroll.calculators.tax_table import TaxBracketTable, get_tax_table

__all__ = [
    "PayrollLineCalculator",
    "InsuranceRateDefaults",
    "InsuranceRateResolver",
    "TaxBracketTable",
    "get_tax_table",
]
