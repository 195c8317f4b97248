"""Read-only employee lookup used when assigning employees to payroll rows."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.models import Employee


@dataclass(frozen=True)
class EmployeeRef:
    """The employee fields a payroll row needs."""

    employee_id: int
    company_id: int
    code: str
    name: str
    department: str | None = None
    position: str | None = None
    estimated_annual_salary: Decimal | None = None
    dependents: int | None = None

    @classmethod
    def from_model(cls, employee: Employee) -> EmployeeRef:
        return cls(
            employee_id=employee.employee_id,
            company_id=employee.company_id,
            code=employee.code,
            name=employee.name,
            department=employee.department,
            position=employee.position,
            estimated_annual_salary=(
                Decimal(employee.estimated_annual_salary)
                if employee.estimated_annual_salary is not None
                else None
            ),
            dependents=employee.dependents,
        )


class EmployeeLookup(Protocol):
    async def get_employees(
        self, company_id: int, employee_ids: Iterable[int]
    ) -> dict[int, EmployeeRef]: ...


class EmployeeDirectory:
    """Employee lookup backed by the ``employee`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_employee(self, company_id: int, employee_id: int) -> EmployeeRef | None:
        employees = await self.get_employees(company_id, [employee_id])
        return employees.get(employee_id)

    async def get_employees(
        self, company_id: int, employee_ids: Iterable[int]
    ) -> dict[int, EmployeeRef]:
        ids = list(employee_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(Employee).where(
                Employee.company_id == company_id,
                Employee.employee_id.in_(ids),
            )
        )
        return {e.employee_id: EmployeeRef.from_model(e) for e in result.scalars().all()}
