"""ORM models."""

from npo_payroll.models.base import Base, TimestampMixin
from npo_payroll.models.company import Company, Employee
from npo_payroll.models.insurance import InsuranceRateProfile
from npo_payroll.models.payroll import PayItemSetting, PayrollDraft

__all__ = [
    "Base",
    "TimestampMixin",
    "Company",
    "Employee",
    "InsuranceRateProfile",
    "PayItemSetting",
    "PayrollDraft",
]
