"""Persistence for payroll drafts keyed by company, employee and accrual month."""

from __future__ import annotations

import json
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import AsyncIterator, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.calculators.types import ZERO, AccrualPeriod
from npo_payroll.models import PayrollDraft

logger = logging.getLogger(__name__)


class DraftPersistenceError(Exception):
    """Raised when a draft cannot be read from or written to storage."""

    def __init__(self, operation: str, cause: Exception | None = None):
        self.operation = operation
        self.cause = cause
        msg = f"Draft {operation} failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


@dataclass(frozen=True)
class DraftKey:
    """Unique key of a draft."""

    company_id: int
    employee_id: int
    accrual_year: int
    accrual_month: int

    @classmethod
    def for_period(cls, company_id: int, employee_id: int, period: AccrualPeriod) -> DraftKey:
        return cls(company_id, employee_id, period.year, period.month)


@dataclass
class DraftSnapshot:
    """Serialized state of one payroll row."""

    key: DraftKey
    funding_source: str = ""
    estimated_annual_salary: Decimal = ZERO
    final_income_tax: Decimal = ZERO
    pay_item_values: dict[str, list[Decimal]] = field(default_factory=dict)
    updated_at: datetime | None = None


def serialize_values(values: dict[str, list[Decimal]]) -> str:
    """Encode a section -> amounts map; amounts are written as strings."""
    return json.dumps(
        {section: [str(amount) for amount in amounts] for section, amounts in values.items()},
        ensure_ascii=False,
        sort_keys=True,
    )


def deserialize_values(raw: str | None) -> dict[str, list[Decimal]]:
    """Decode a section -> amounts map, failing open to an empty map."""
    if raw is None or not raw.strip() or raw.strip() == "{}":
        return {}

    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("expected a JSON object")
        values: dict[str, list[Decimal]] = {}
        for section, amounts in data.items():
            if not isinstance(amounts, list):
                raise ValueError(f"section {section!r} is not a list")
            # str() keeps JSON numbers like 0.1 exact
            parsed = [Decimal(str(amount)) for amount in amounts]
            if not all(amount.is_finite() for amount in parsed):
                raise ValueError(f"section {section!r} holds a non-finite amount")
            values[str(section)] = parsed
        return values
    except (ValueError, TypeError, InvalidOperation) as exc:
        logger.warning("Discarding malformed draft values (%s)", exc)
        return {}


class DraftRepository(Protocol):
    """Storage for payroll drafts."""

    async def load(self, key: DraftKey) -> DraftSnapshot | None: ...

    async def save(self, snapshot: DraftSnapshot) -> None: ...

    async def delete(self, key: DraftKey) -> bool: ...

    async def list_for_period(self, company_id: int, period: AccrualPeriod) -> list[DraftSnapshot]: ...

    def unit_of_work(self) -> AbstractAsyncContextManager[DraftRepository]: ...


class PayrollDraftStore:
    """Draft storage backed by the ``payroll_draft`` table.

    ``load``/``save``/``delete`` do not commit; wrap writes in
    ``unit_of_work()`` to commit them together or not at all.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[PayrollDraftStore]:
        try:
            yield self
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise DraftPersistenceError("commit", exc) from exc
        except Exception:
            await self.session.rollback()
            raise

    async def load(self, key: DraftKey) -> DraftSnapshot | None:
        try:
            row = await self._get_row(key)
        except SQLAlchemyError as exc:
            raise DraftPersistenceError("load", exc) from exc
        return self._to_snapshot(row) if row is not None else None

    async def save(self, snapshot: DraftSnapshot) -> None:
        """Insert or update the draft for ``snapshot.key``."""
        key = snapshot.key
        now = datetime.now(timezone.utc)
        try:
            row = await self._get_row(key)
            if row is None:
                row = PayrollDraft(
                    company_id=key.company_id,
                    employee_id=key.employee_id,
                    accrual_year=key.accrual_year,
                    accrual_month=key.accrual_month,
                )
                self.session.add(row)

            row.funding_source = snapshot.funding_source or ""
            row.estimated_annual_salary = snapshot.estimated_annual_salary
            row.final_income_tax = snapshot.final_income_tax
            row.pay_item_values_json = serialize_values(snapshot.pay_item_values)
            row.updated_at = now
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise DraftPersistenceError("save", exc) from exc

        snapshot.updated_at = now

    async def delete(self, key: DraftKey) -> bool:
        try:
            result = await self.session.execute(
                delete(PayrollDraft).where(*self._key_clause(key))
            )
        except SQLAlchemyError as exc:
            raise DraftPersistenceError("delete", exc) from exc
        return bool(result.rowcount)

    async def list_for_period(self, company_id: int, period: AccrualPeriod) -> list[DraftSnapshot]:
        try:
            result = await self.session.execute(
                select(PayrollDraft)
                .where(
                    PayrollDraft.company_id == company_id,
                    PayrollDraft.accrual_year == period.year,
                    PayrollDraft.accrual_month == period.month,
                )
                .order_by(PayrollDraft.draft_id)
            )
        except SQLAlchemyError as exc:
            raise DraftPersistenceError("list", exc) from exc
        return [self._to_snapshot(row) for row in result.scalars().all()]

    async def _get_row(self, key: DraftKey) -> PayrollDraft | None:
        result = await self.session.execute(select(PayrollDraft).where(*self._key_clause(key)))
        return result.scalar_one_or_none()

    @staticmethod
    def _key_clause(key: DraftKey) -> tuple:
        return (
            PayrollDraft.company_id == key.company_id,
            PayrollDraft.employee_id == key.employee_id,
            PayrollDraft.accrual_year == key.accrual_year,
            PayrollDraft.accrual_month == key.accrual_month,
        )

    @staticmethod
    def _to_snapshot(row: PayrollDraft) -> DraftSnapshot:
        return DraftSnapshot(
            key=DraftKey(row.company_id, row.employee_id, row.accrual_year, row.accrual_month),
            funding_source=row.funding_source or "",
            estimated_annual_salary=Decimal(row.estimated_annual_salary or 0),
            final_income_tax=Decimal(row.final_income_tax or 0),
            pay_item_values=deserialize_values(row.pay_item_values_json),
            updated_at=row.updated_at,
        )
