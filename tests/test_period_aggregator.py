"""Tests for the payroll period aggregator."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from npo_payroll.calculators.rate_resolver import (
    InsuranceRateDefaults,
    InsuranceRateResolver,
    category_rate_from_percent,
)
from npo_payroll.calculators.types import AccrualPeriod, InsuranceCategory, PaySection, RateProfile
from npo_payroll.models import PayrollDraft
from npo_payroll.services.draft_store import DraftKey, DraftPersistenceError, DraftSnapshot, PayrollDraftStore
from npo_payroll.services.employee_directory import EmployeeDirectory, EmployeeRef
from npo_payroll.services.period_aggregator import (
    DuplicateEmployeeError,
    ForeignEmployeeError,
    MissingCompanyContextError,
    PayrollPeriodAggregator,
)
from npo_payroll.services.state_machine import InvalidTransitionError, SessionStatus

MARCH = AccrualPeriod(2024, 3)
APRIL = AccrualPeriod(2024, 4)


class FailingDraftStore(PayrollDraftStore):
    """Draft store whose n-th save fails."""

    def __init__(self, session, fail_on_save: int):
        super().__init__(session)
        self.fail_on_save = fail_on_save
        self.saves = 0

    async def save(self, snapshot: DraftSnapshot) -> None:
        self.saves += 1
        if self.saves == self.fail_on_save:
            raise DraftPersistenceError("save", RuntimeError("disk full"))
        await super().save(snapshot)


class UnreadableDraftStore(PayrollDraftStore):
    async def list_for_period(self, company_id, period):
        raise DraftPersistenceError("list", RuntimeError("connection lost"))


def _make_aggregator(session, calculator, draft_store=None, **kwargs) -> PayrollPeriodAggregator:
    return PayrollPeriodAggregator(
        draft_store=draft_store or PayrollDraftStore(session),
        employees=EmployeeDirectory(session),
        rate_resolver=InsuranceRateResolver.for_session(session),
        calculator=calculator,
        **kwargs,
    )


async def _draft_count(session) -> int:
    return await session.scalar(select(func.count()).select_from(PayrollDraft))


@pytest.fixture
def aggregator(session, calculator) -> PayrollPeriodAggregator:
    return _make_aggregator(session, calculator)


@pytest.fixture
def kim(employee_refs) -> EmployeeRef:
    return employee_refs[0]


@pytest.fixture
def lee(employee_refs) -> EmployeeRef:
    return employee_refs[1]


@pytest.fixture
def park(employee_refs) -> EmployeeRef:
    return employee_refs[2]


class TestOpeningPeriods:
    """Test loading a period."""

    def test_initial_state(self, aggregator):
        assert aggregator.status == SessionStatus.IDLE
        assert len(aggregator.rows) == 20
        assert [r.sequence for r in aggregator.rows[:3]] == [1, 2, 3]
        assert not any(r.has_employee for r in aggregator.rows)

    @pytest.mark.asyncio
    async def test_open_empty_period(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)

        assert aggregator.status == SessionStatus.READY
        assert aggregator.company_id == test_company.company_id
        assert aggregator.period == MARCH
        assert aggregator.profile.is_default is True
        assert aggregator.rows[0].breakdown is not None

    @pytest.mark.asyncio
    async def test_drafts_loaded_in_employee_code_order(
        self, session, calculator, aggregator, test_company, kim, lee, park
    ):
        """Test that a saved period reloads ordered by employee code."""
        await aggregator.open_period(test_company.company_id, MARCH)
        for index, employee in enumerate((kim, lee, park)):
            await aggregator.assign_employee(index, employee)
        aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("3000000"))
        aggregator.set_funding_source(0, "보조금")
        await aggregator.save_all()

        reopened = _make_aggregator(session, calculator)
        await reopened.open_period(test_company.company_id, MARCH)

        assert [r.employee.code for r in reopened.rows[:3]] == ["E001", "E002", "E003"]
        kim_row = reopened.rows[2]
        assert kim_row.inputs.get_value(PaySection.TAXABLE_EARNINGS, 0) == Decimal("3000000")
        assert kim_row.funding_source == "보조금"
        assert kim_row.breakdown.employee_national_pension == Decimal("135000")
        assert reopened.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_rows_grow_to_fit_drafts(self, session, calculator, test_company, employee_refs):
        """Test that capacity covers every draft plus the growth step."""
        store = PayrollDraftStore(session)
        async with store.unit_of_work():
            for employee in employee_refs:
                await store.save(
                    DraftSnapshot(key=DraftKey.for_period(test_company.company_id, employee.employee_id, MARCH))
                )

        aggregator = _make_aggregator(session, calculator, default_row_count=2, row_growth_step=5)
        await aggregator.open_period(test_company.company_id, MARCH)

        assert len(aggregator.rows) == 8
        assert sum(r.has_employee for r in aggregator.rows) == 3

    @pytest.mark.asyncio
    async def test_draft_salary_snapshot_wins(self, session, aggregator, test_company, lee):
        """Test that the stored salary estimate is used, not the current one."""
        store = PayrollDraftStore(session)
        async with store.unit_of_work():
            await store.save(
                DraftSnapshot(
                    key=DraftKey.for_period(test_company.company_id, lee.employee_id, MARCH),
                    estimated_annual_salary=Decimal("48000000"),
                )
            )

        await aggregator.open_period(test_company.company_id, MARCH)

        assert aggregator.rows[0].inputs.estimated_annual_salary == Decimal("48000000")
        assert aggregator.rows[0].inputs.dependents == lee.dependents

    @pytest.mark.asyncio
    async def test_failed_load_returns_to_idle(self, session, calculator, test_company):
        aggregator = _make_aggregator(session, calculator, draft_store=UnreadableDraftStore(session))

        with pytest.raises(DraftPersistenceError):
            await aggregator.open_period(test_company.company_id, MARCH)

        assert aggregator.status == SessionStatus.IDLE
        assert aggregator.company_id is None

    @pytest.mark.asyncio
    async def test_non_finite_stored_amounts_do_not_block_period(
        self, session, aggregator, test_company, kim
    ):
        session.add(
            PayrollDraft(
                company_id=test_company.company_id,
                employee_id=kim.employee_id,
                accrual_year=MARCH.year,
                accrual_month=MARCH.month,
                pay_item_values_json='{"TaxableEarnings": ["Infinity"]}',
                updated_at=datetime.now(timezone.utc),
            )
        )
        await session.commit()

        await aggregator.open_period(test_company.company_id, MARCH)

        row = aggregator.rows[0]
        assert aggregator.status == SessionStatus.READY
        assert row.employee_id == kim.employee_id
        assert row.inputs.section_values == {}
        assert row.breakdown.net_pay == Decimal("0")


class TestAssigningEmployees:
    """Test row assignment."""

    @pytest.mark.asyncio
    async def test_assign_requires_company(self, aggregator, kim):
        with pytest.raises(MissingCompanyContextError):
            await aggregator.assign_employee(0, kim)

        assert not aggregator.rows[0].has_employee

    @pytest.mark.asyncio
    async def test_assign_without_draft_marks_dirty(self, aggregator, test_company, lee):
        await aggregator.open_period(test_company.company_id, MARCH)

        row = await aggregator.assign_employee(0, lee)

        assert row.employee == lee
        assert row.inputs.estimated_annual_salary == Decimal("60000000")
        assert row.breakdown.income_tax_estimated == Decimal("364490")
        assert aggregator.status == SessionStatus.DIRTY

    @pytest.mark.asyncio
    async def test_missing_employee_details_default(self, aggregator, test_company, park):
        await aggregator.open_period(test_company.company_id, MARCH)

        row = await aggregator.assign_employee(0, park)

        assert row.inputs.estimated_annual_salary == Decimal("0")
        assert row.inputs.dependents == 1

    @pytest.mark.asyncio
    async def test_duplicate_assignment_rejected(self, aggregator, test_company, kim):
        """Test that the second assignment is refused and the first kept."""
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)

        with pytest.raises(DuplicateEmployeeError) as exc_info:
            await aggregator.assign_employee(1, kim)

        assert exc_info.value.existing_sequence == 1
        assert aggregator.rows[0].employee == kim
        assert not aggregator.rows[1].has_employee

    @pytest.mark.asyncio
    async def test_reassigning_same_row_allowed(self, aggregator, test_company, kim):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)

        row = await aggregator.assign_employee(0, kim)

        assert row.employee == kim

    @pytest.mark.asyncio
    async def test_foreign_employee_rejected(self, aggregator, test_company, other_company):
        await aggregator.open_period(test_company.company_id, MARCH)
        outsider = EmployeeRef(employee_id=99, company_id=other_company.company_id, code="X1", name="Outsider")

        with pytest.raises(ForeignEmployeeError):
            await aggregator.assign_employee(0, outsider)

    @pytest.mark.asyncio
    async def test_assign_loads_existing_draft_clean(self, session, aggregator, test_company, kim):
        """Test that picking an employee with a draft does not mark dirty."""
        await aggregator.open_period(test_company.company_id, MARCH)
        store = PayrollDraftStore(session)
        async with store.unit_of_work():
            await store.save(
                DraftSnapshot(
                    key=DraftKey.for_period(test_company.company_id, kim.employee_id, MARCH),
                    funding_source="후원금",
                    estimated_annual_salary=Decimal("36000000"),
                    final_income_tax=Decimal("50000"),
                    pay_item_values={"TaxableEarnings": [Decimal("3000000")]},
                )
            )

        row = await aggregator.assign_employee(3, kim)

        assert aggregator.status == SessionStatus.READY
        assert row.funding_source == "후원금"
        assert row.breakdown.income_tax == Decimal("50000")
        assert row.breakdown.local_income_tax == Decimal("5000")

    @pytest.mark.asyncio
    async def test_assign_resets_previous_values(self, aggregator, test_company, kim, lee):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("3000000"))

        row = await aggregator.assign_employee(0, lee)

        assert row.inputs.subtotal(PaySection.TAXABLE_EARNINGS) == Decimal("0")

    @pytest.mark.asyncio
    async def test_refresh_employee(self, aggregator, test_company, kim):
        """Test that edited employee details flow into the row."""
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)

        updated = EmployeeRef(
            employee_id=kim.employee_id,
            company_id=kim.company_id,
            code=kim.code,
            name="Kim Minji",
            estimated_annual_salary=Decimal("60000000"),
            dependents=3,
        )
        row = aggregator.refresh_employee(0, updated)

        assert row.inputs.dependents == 3
        assert row.breakdown.income_tax_estimated == Decimal("260630")


class TestEditing:
    """Test value edits and dirty tracking."""

    def test_edit_requires_open_period(self, aggregator):
        with pytest.raises(MissingCompanyContextError):
            aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("1"))

    @pytest.mark.asyncio
    async def test_set_value_recalculates(self, aggregator, test_company, kim):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)

        breakdown = aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("2000000"))

        assert breakdown.employee_national_pension == Decimal("90000")
        assert aggregator.rows[0].breakdown is breakdown

    @pytest.mark.asyncio
    async def test_set_final_income_tax(self, aggregator, test_company, kim):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)

        breakdown = aggregator.set_final_income_tax(0, Decimal("30000"))

        assert breakdown.income_tax_subtotal == Decimal("33000")

    @pytest.mark.asyncio
    async def test_suppressed_edits_stay_clean(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)

        with aggregator.suppress_dirty():
            with aggregator.suppress_dirty():
                aggregator.set_value(0, PaySection.RETIREMENT, 0, Decimal("1000"))
            aggregator.set_funding_source(0, "보조금")

        assert aggregator.status == SessionStatus.READY
        assert aggregator.is_dirty_suppressed is False

        aggregator.set_funding_source(0, "후원금")
        assert aggregator.status == SessionStatus.DIRTY

    @pytest.mark.asyncio
    async def test_grow_capacity(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)

        added = aggregator.grow_capacity(5)

        assert len(aggregator.rows) == 25
        assert [r.sequence for r in added] == [21, 22, 23, 24, 25]
        assert aggregator.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_row_out_of_range(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)

        with pytest.raises(IndexError):
            aggregator.set_funding_source(20, "보조금")

    @pytest.mark.asyncio
    async def test_totals(self, aggregator, test_company, kim, lee):
        """Test period sums over assigned rows only."""
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        await aggregator.assign_employee(1, lee)
        aggregator.set_value(0, PaySection.NON_TAXABLE_EARNINGS, 0, Decimal("200000"))
        aggregator.set_value(1, PaySection.NON_TAXABLE_EARNINGS, 0, Decimal("100000"))
        aggregator.set_value(5, PaySection.NON_TAXABLE_EARNINGS, 0, Decimal("999999"))

        totals = aggregator.totals()

        assert totals.employee_count == 2
        assert totals.net_pay == Decimal("300000")
        # industrial accident at 7.26% of non-taxable earnings
        assert totals.employer_total_burden == Decimal("300000") + Decimal("14520") + Decimal("7260")


class TestSaving:
    """Test clearing rows and saving the period."""

    @pytest.mark.asyncio
    async def test_save_all_writes_assigned_rows(self, session, aggregator, test_company, kim, lee):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        await aggregator.assign_employee(4, lee)

        result = await aggregator.save_all()

        assert result.saved == 2
        assert result.deleted == 0
        assert aggregator.status == SessionStatus.READY
        assert await _draft_count(session) == 2

    @pytest.mark.asyncio
    async def test_save_when_clean_is_noop(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)

        result = await aggregator.save_all()

        assert (result.saved, result.deleted) == (0, 0)

    @pytest.mark.asyncio
    async def test_save_requires_company(self, aggregator):
        with pytest.raises(MissingCompanyContextError):
            await aggregator.save_all()

    @pytest.mark.asyncio
    async def test_save_deletes_unassigned_drafts(
        self, session, calculator, aggregator, test_company, kim, lee
    ):
        """Test that replacing an employee on a row drops their draft."""
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        await aggregator.save_all()

        await aggregator.assign_employee(0, lee)
        result = await aggregator.save_all()

        assert result.deleted == 1
        drafts = await PayrollDraftStore(session).list_for_period(test_company.company_id, MARCH)
        assert [d.key.employee_id for d in drafts] == [lee.employee_id]

    @pytest.mark.asyncio
    async def test_save_failure_is_atomic(self, session, calculator, test_company, kim, lee, park):
        """Test that a failure mid-save writes nothing and keeps edits."""
        aggregator = _make_aggregator(
            session, calculator, draft_store=FailingDraftStore(session, fail_on_save=2)
        )
        await aggregator.open_period(test_company.company_id, MARCH)
        for index, employee in enumerate((kim, lee, park)):
            await aggregator.assign_employee(index, employee)
        aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("3000000"))

        with pytest.raises(DraftPersistenceError):
            await aggregator.save_all()

        assert aggregator.status == SessionStatus.DIRTY
        assert await _draft_count(session) == 0
        assert aggregator.rows[0].inputs.get_value(PaySection.TAXABLE_EARNINGS, 0) == Decimal("3000000")

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, session, calculator, test_company, kim, lee):
        aggregator = _make_aggregator(
            session, calculator, draft_store=FailingDraftStore(session, fail_on_save=1)
        )
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        await aggregator.assign_employee(1, lee)

        with pytest.raises(DraftPersistenceError):
            await aggregator.save_all()
        result = await aggregator.save_all()

        assert result.saved == 2
        assert aggregator.status == SessionStatus.READY

    @pytest.mark.asyncio
    async def test_clear_row_deletes_draft_immediately(self, session, aggregator, test_company, kim):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        await aggregator.save_all()

        row = await aggregator.clear_row(0)

        assert not row.has_employee
        assert row.net_pay == Decimal("0")
        assert aggregator.status == SessionStatus.DIRTY
        assert await _draft_count(session) == 0

    @pytest.mark.asyncio
    async def test_period_switch_discards_edits(self, session, aggregator, test_company, kim):
        """Test that changing month reloads from storage without saving."""
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("3000000"))

        await aggregator.change_period(APRIL)

        assert aggregator.period == APRIL
        assert aggregator.status == SessionStatus.READY
        assert not any(r.has_employee for r in aggregator.rows)

        await aggregator.change_period(MARCH)
        assert not any(r.has_employee for r in aggregator.rows)
        assert await _draft_count(session) == 0

    @pytest.mark.asyncio
    async def test_edit_during_save_rejected(self, aggregator, test_company):
        await aggregator.open_period(test_company.company_id, MARCH)
        aggregator._machine.status = SessionStatus.SAVING

        with pytest.raises(InvalidTransitionError):
            aggregator.set_funding_source(0, "보조금")


class TestRateChanges:
    """Test picking up edited insurance rates."""

    @pytest.mark.asyncio
    async def test_reload_rates_recalculates_rows(self, session, aggregator, test_company, kim):
        await aggregator.open_period(test_company.company_id, MARCH)
        await aggregator.assign_employee(0, kim)
        aggregator.set_value(0, PaySection.TAXABLE_EARNINGS, 0, Decimal("2000000"))
        assert aggregator.has_pending_changes is True

        rates = InsuranceRateDefaults().rates()
        rates[InsuranceCategory.NATIONAL_PENSION] = category_rate_from_percent(Decimal("5"), Decimal("5"))
        await InsuranceRateResolver.for_session(session).save(
            RateProfile(company_id=test_company.company_id, rates=rates, effective_from=date(2024, 1, 1))
        )

        await aggregator.reload_rates()

        assert aggregator.profile.is_default is False
        assert aggregator.rows[0].breakdown.employee_national_pension == Decimal("100000")
