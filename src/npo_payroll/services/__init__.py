"""Payroll services."""

from npo_payroll.services.catalog_service import CatalogValidationError, PayItemCatalog
from npo_payroll.services.draft_store import DraftKey, DraftPersistenceError, DraftSnapshot, PayrollDraftStore
from npo_payroll.services.employee_directory import EmployeeDirectory, EmployeeRef
from npo_payroll.services.period_aggregator import (
    DuplicateEmployeeError,
    MissingCompanyContextError,
    PayrollPeriodAggregator,
)
from npo_payroll.services.state_machine import InvalidTransitionError, PeriodSessionStateMachine, SessionStatus

__all__ = [
    "CatalogValidationError",
    "PayItemCatalog",
    "DraftKey",
    "DraftPersistenceError",
    "DraftSnapshot",
    "PayrollDraftStore",
    "EmployeeDirectory",
    "EmployeeRef",
    "DuplicateEmployeeError",
    "MissingCompanyContextError",
    "PayrollPeriodAggregator",
    "InvalidTransitionError",
    "PeriodSessionStateMachine",
    "SessionStatus",
]
