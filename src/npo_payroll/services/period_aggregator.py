"""Payroll period aggregator: one editable row per employee for an accrual month."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Iterator

from npo_payroll.calculators.line_calculator import PayrollLineCalculator
from npo_payroll.calculators.rate_resolver import InsuranceRateResolver
from npo_payroll.calculators.tax_table import get_tax_table
from npo_payroll.calculators.types import (
    ZERO,
    AccrualPeriod,
    PayrollBreakdown,
    PayrollInputs,
    PaySection,
    RateProfile,
)
from npo_payroll.config import get_settings
from npo_payroll.services.draft_store import (
    DraftKey,
    DraftRepository,
    DraftSnapshot,
    PayrollDraftStore,
)
from npo_payroll.services.employee_directory import EmployeeDirectory, EmployeeLookup, EmployeeRef
from npo_payroll.services.state_machine import (
    InvalidTransitionError,
    PeriodSessionStateMachine,
    SessionStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from npo_payroll.calculators.tax_table import TaxBracketTable
    from npo_payroll.config import Settings

logger = logging.getLogger(__name__)


class AssignmentError(Exception):
    """Raised when a row operation is refused; nothing was changed."""


class MissingCompanyContextError(AssignmentError):
    """Raised when an operation needs an open company period and there is none."""

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Select a company and accrual period before '{operation}'")


class DuplicateEmployeeError(AssignmentError):
    """Raised when an employee is already assigned to another row of the period."""

    def __init__(self, employee: EmployeeRef, existing_sequence: int):
        self.employee = employee
        self.existing_sequence = existing_sequence
        super().__init__(
            f"Employee '{employee.name}' ({employee.code}) is already on row {existing_sequence}"
        )


class ForeignEmployeeError(AssignmentError):
    """Raised when assigning an employee of another company."""

    def __init__(self, employee: EmployeeRef, company_id: int):
        self.employee = employee
        self.company_id = company_id
        super().__init__(
            f"Employee '{employee.name}' belongs to company {employee.company_id}, "
            f"not {company_id}"
        )


@dataclass
class PayrollRow:
    """One employee slot of the period grid."""

    sequence: int
    inputs: PayrollInputs = field(default_factory=PayrollInputs)
    funding_source: str = ""
    employee: EmployeeRef | None = None
    breakdown: PayrollBreakdown | None = None

    @property
    def has_employee(self) -> bool:
        return self.employee is not None

    @property
    def employee_id(self) -> int | None:
        return self.employee.employee_id if self.employee else None

    @property
    def net_pay(self) -> Decimal:
        return self.breakdown.net_pay if self.breakdown else ZERO

    @property
    def company_burden(self) -> Decimal:
        return self.breakdown.employer_total_burden if self.breakdown else ZERO

    def reset_inputs(self) -> None:
        self.inputs = PayrollInputs()
        self.funding_source = ""


@dataclass(frozen=True)
class SaveResult:
    saved: int
    deleted: int


@dataclass(frozen=True)
class PeriodTotals:
    """Period sums over rows that have an employee."""

    employee_count: int
    net_pay: Decimal
    employer_total_burden: Decimal


class PayrollPeriodAggregator:
    """Drives the payroll rows of one company for one accrual period.

    Each row is recalculated right after it changes. Edits mark the session
    dirty, except inside ``suppress_dirty()``, which is used while existing
    drafts are applied. ``save_all`` writes every assigned row and removes
    drafts of unassigned employees in a single transaction.

    Switching the period reloads all rows from storage and discards unsaved
    edits without asking.
    """

    def __init__(
        self,
        draft_store: DraftRepository,
        employees: EmployeeLookup,
        rate_resolver: InsuranceRateResolver,
        calculator: PayrollLineCalculator,
        default_row_count: int = 20,
        row_growth_step: int = 5,
    ):
        self.draft_store = draft_store
        self.employees = employees
        self.rate_resolver = rate_resolver
        self.calculator = calculator
        self.default_row_count = default_row_count
        self.row_growth_step = row_growth_step

        self.rows: list[PayrollRow] = []
        self.company_id: int | None = None
        self.period: AccrualPeriod | None = None
        self.profile: RateProfile | None = None

        self._machine = PeriodSessionStateMachine()
        self._suppress_depth = 0

        self.grow_capacity(default_row_count)

    @classmethod
    def for_session(
        cls,
        session: AsyncSession,
        tax_table: TaxBracketTable | None = None,
        settings: Settings | None = None,
    ) -> PayrollPeriodAggregator:
        """Wire the aggregator to SQL-backed collaborators sharing one session."""
        settings = settings or get_settings()
        return cls(
            draft_store=PayrollDraftStore(session),
            employees=EmployeeDirectory(session),
            rate_resolver=InsuranceRateResolver.for_session(session),
            calculator=PayrollLineCalculator(tax_table or get_tax_table()),
            default_row_count=settings.default_row_count,
            row_growth_step=settings.row_growth_step,
        )

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._machine.status

    @property
    def has_pending_changes(self) -> bool:
        return self._machine.is_dirty

    @property
    def is_dirty_suppressed(self) -> bool:
        return self._suppress_depth > 0

    @contextmanager
    def suppress_dirty(self) -> Iterator[None]:
        """Scope inside which edits do not mark the session dirty; nests."""
        self._suppress_depth += 1
        try:
            yield
        finally:
            self._suppress_depth -= 1

    def mark_dirty(self) -> None:
        if self.is_dirty_suppressed:
            return
        if self.status == SessionStatus.READY:
            self._machine.transition(SessionStatus.DIRTY)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def open_period(self, company_id: int, period: AccrualPeriod) -> None:
        """Load all drafts of ``period`` into rows, replacing the current state."""
        self._machine.transition(SessionStatus.LOADING)
        try:
            with self.suppress_dirty():
                for row in self.rows:
                    row.reset_inputs()
                    row.employee = None
                    row.breakdown = None

                self.company_id = company_id
                self.period = period
                self.profile = await self.rate_resolver.resolve(company_id)

                drafts = await self.draft_store.list_for_period(company_id, period)
                employees = await self.employees.get_employees(
                    company_id, [d.key.employee_id for d in drafts]
                )
                placed = [d for d in drafts if d.key.employee_id in employees]
                if len(placed) < len(drafts):
                    logger.warning(
                        "Skipped %d draft(s) of %s whose employee no longer exists",
                        len(drafts) - len(placed),
                        period,
                    )
                placed.sort(key=lambda d: employees[d.key.employee_id].code)

                required = max(self.default_row_count, len(placed) + self.row_growth_step)
                if len(self.rows) < required:
                    self.grow_capacity(required - len(self.rows))

                for row, draft in zip(self.rows, placed):
                    self._assign(row, employees[draft.key.employee_id])
                    self._apply_draft(row, draft)
                for row in self.rows[len(placed):]:
                    self._recalculate(row)
        except Exception:
            self.company_id = None
            self.period = None
            self.profile = None
            self._machine.transition(SessionStatus.IDLE)
            raise

        self._machine.transition(SessionStatus.READY)
        logger.info(
            "Opened payroll period %s for company %s with %d draft(s)",
            period,
            company_id,
            len(placed),
        )

    async def change_period(self, period: AccrualPeriod) -> None:
        """Switch to another accrual period of the current company."""
        if self.company_id is None:
            raise MissingCompanyContextError("change_period")
        await self.open_period(self.company_id, period)

    async def reload_rates(self) -> None:
        """Re-resolve the insurance profile and recalculate every row."""
        company_id, _ = self._require_context("reload_rates")
        self.rate_resolver.invalidate(company_id)
        self.profile = await self.rate_resolver.resolve(company_id)
        for row in self.rows:
            self._recalculate(row)

    # ------------------------------------------------------------------
    # Row operations
    # ------------------------------------------------------------------

    def grow_capacity(self, count: int) -> list[PayrollRow]:
        """Append ``count`` blank rows."""
        if count < 0:
            raise ValueError(f"Row count must be non-negative, got {count}")
        added = [PayrollRow(sequence=len(self.rows) + i + 1) for i in range(count)]
        self.rows.extend(added)
        return added

    def row(self, row_index: int) -> PayrollRow:
        if not 0 <= row_index < len(self.rows):
            raise IndexError(f"Row {row_index} out of range (0..{len(self.rows) - 1})")
        return self.rows[row_index]

    def find_row(self, employee_id: int) -> PayrollRow | None:
        return next((r for r in self.rows if r.employee_id == employee_id), None)

    async def assign_employee(self, row_index: int, employee: EmployeeRef) -> PayrollRow:
        """Place an employee on a row and load their draft for the period.

        Raises DuplicateEmployeeError if the employee already occupies another
        row; the existing assignment is left untouched.
        """
        company_id, period = self._require_context("assign_employee")
        row = self.row(row_index)

        if employee.company_id != company_id:
            raise ForeignEmployeeError(employee, company_id)

        existing = self.find_row(employee.employee_id)
        if existing is not None and existing is not row:
            raise DuplicateEmployeeError(employee, existing.sequence)

        with self.suppress_dirty():
            row.reset_inputs()
            self._assign(row, employee)

        try:
            draft = await self.draft_store.load(
                DraftKey.for_period(company_id, employee.employee_id, period)
            )
        except Exception:
            self.mark_dirty()
            raise

        if draft is None:
            self.mark_dirty()
        else:
            with self.suppress_dirty():
                self._apply_draft(row, draft)

        return row

    def refresh_employee(self, row_index: int, employee: EmployeeRef) -> PayrollRow:
        """Pick up edited employee details (name, salary estimate, dependents)."""
        self._require_context("refresh_employee")
        row = self.row(row_index)
        if row.employee_id != employee.employee_id:
            raise AssignmentError(
                f"Row {row.sequence} does not hold employee {employee.employee_id}"
            )
        self._assign(row, employee)
        self.mark_dirty()
        return row

    async def clear_row(self, row_index: int) -> PayrollRow:
        """Reset a row, unassign its employee and delete the stored draft."""
        company_id, period = self._require_context("clear_row")
        row = self.row(row_index)
        employee_id = row.employee_id

        row.reset_inputs()
        row.employee = None
        self._recalculate(row)
        self.mark_dirty()

        if employee_id is not None:
            async with self.draft_store.unit_of_work() as store:
                await store.delete(DraftKey.for_period(company_id, employee_id, period))
            logger.info("Deleted draft of employee %s for %s", employee_id, period)
        return row

    def set_value(
        self,
        row_index: int,
        section: str | PaySection,
        item_index: int,
        amount: Decimal,
    ) -> PayrollBreakdown | None:
        """Enter an amount at a catalog position of a section."""
        self._require_editable("set_value")
        row = self.row(row_index)
        row.inputs.set_value(section, item_index, amount)
        self._recalculate(row)
        self.mark_dirty()
        return row.breakdown

    def set_final_income_tax(self, row_index: int, amount: Decimal) -> PayrollBreakdown | None:
        self._require_editable("set_final_income_tax")
        row = self.row(row_index)
        row.inputs.final_income_tax = Decimal(amount)
        self._recalculate(row)
        self.mark_dirty()
        return row.breakdown

    def set_funding_source(self, row_index: int, label: str) -> None:
        self._require_editable("set_funding_source")
        self.row(row_index).funding_source = label
        self.mark_dirty()

    # ------------------------------------------------------------------
    # Saving and reporting
    # ------------------------------------------------------------------

    async def save_all(self) -> SaveResult:
        """Persist every assigned row and drop drafts of unassigned employees.

        All writes share one transaction. On failure nothing is written, the
        session goes through ``error`` back to ``dirty`` and the error is
        re-raised so the caller can retry.
        """
        company_id, period = self._require_context("save_all")
        if self.status == SessionStatus.READY:
            return SaveResult(saved=0, deleted=0)

        self._machine.transition(SessionStatus.SAVING)
        try:
            async with self.draft_store.unit_of_work() as store:
                existing = await store.list_for_period(company_id, period)
                active: set[int] = set()
                for row in self.rows:
                    if row.employee is None:
                        continue
                    key = DraftKey.for_period(company_id, row.employee.employee_id, period)
                    await store.save(self._snapshot(key, row))
                    active.add(row.employee.employee_id)

                stale = [d.key for d in existing if d.key.employee_id not in active]
                for stale_key in stale:
                    await store.delete(stale_key)
        except Exception:
            self._machine.transition(SessionStatus.ERROR)
            logger.exception("Saving payroll period %s for company %s failed", period, company_id)
            self._machine.transition(SessionStatus.DIRTY)
            raise

        self._machine.transition(SessionStatus.READY)
        logger.info(
            "Saved %d draft(s), deleted %d for %s", len(active), len(stale), period
        )
        return SaveResult(saved=len(active), deleted=len(stale))

    def totals(self) -> PeriodTotals:
        assigned = [r for r in self.rows if r.has_employee]
        return PeriodTotals(
            employee_count=len(assigned),
            net_pay=sum((r.net_pay for r in assigned), ZERO),
            employer_total_burden=sum((r.company_burden for r in assigned), ZERO),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_context(self, operation: str) -> tuple[int, AccrualPeriod]:
        if self.company_id is None or self.period is None:
            raise MissingCompanyContextError(operation)
        return self.company_id, self.period

    def _require_editable(self, operation: str) -> None:
        self._require_context(operation)
        if not self._machine.can_edit(self.status):
            raise InvalidTransitionError(self.status.value, SessionStatus.DIRTY.value, operation)

    def _assign(self, row: PayrollRow, employee: EmployeeRef) -> None:
        row.employee = employee
        row.inputs.estimated_annual_salary = employee.estimated_annual_salary or ZERO
        row.inputs.dependents = employee.dependents or 1
        self._recalculate(row)

    def _apply_draft(self, row: PayrollRow, draft: DraftSnapshot) -> None:
        row.inputs.section_values = {k: list(v) for k, v in draft.pay_item_values.items()}
        row.inputs.estimated_annual_salary = draft.estimated_annual_salary
        row.inputs.final_income_tax = draft.final_income_tax
        row.funding_source = draft.funding_source
        self._recalculate(row)

    def _snapshot(self, key: DraftKey, row: PayrollRow) -> DraftSnapshot:
        return DraftSnapshot(
            key=key,
            funding_source=row.funding_source,
            estimated_annual_salary=row.inputs.estimated_annual_salary,
            final_income_tax=row.inputs.final_income_tax,
            pay_item_values={k: list(v) for k, v in row.inputs.section_values.items()},
        )

    def _recalculate(self, row: PayrollRow) -> None:
        if self.profile is None:
            row.breakdown = None
            return
        row.breakdown = self.calculator.calculate(row.inputs, self.profile)
