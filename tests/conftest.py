"""Pytest fixtures for payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from npo_payroll.calculators.line_calculator import PayrollLineCalculator
from npo_payroll.calculators.tax_table import TaxBracketTable
from npo_payroll.database import make_session_factory
from npo_payroll.models import Base, Company, Employee
from npo_payroll.services.employee_directory import EmployeeRef

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh test database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def tax_table() -> TaxBracketTable:
    """Built-in bracket table, independent of any file on disk."""
    return TaxBracketTable.fallback()


@pytest.fixture
def calculator(tax_table: TaxBracketTable) -> PayrollLineCalculator:
    return PayrollLineCalculator(tax_table)


@pytest.fixture
async def test_company(session: AsyncSession) -> Company:
    """Create a test company."""
    company = Company(
        code="C001",
        name="Hope Community Center",
        business_number="123-45-67890",
        fiscal_year_start=date(2024, 1, 1),
        fiscal_year_end=date(2024, 12, 31),
    )
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def other_company(session: AsyncSession) -> Company:
    company = Company(
        code="C002",
        name="Sunrise Shelter",
        fiscal_year_start=date(2024, 1, 1),
        fiscal_year_end=date(2024, 12, 31),
    )
    session.add(company)
    await session.commit()
    return company


@pytest.fixture
async def test_employees(session: AsyncSession, test_company: Company) -> list[Employee]:
    """Create test employees; codes sort differently from insertion order."""
    employees = [
        Employee(
            company_id=test_company.company_id,
            code="E003",
            name="Kim Minji",
            department="Care",
            position="Social worker",
            estimated_annual_salary=Decimal("36000000"),
            dependents=2,
        ),
        Employee(
            company_id=test_company.company_id,
            code="E001",
            name="Lee Jihoon",
            department="Admin",
            position="Director",
            estimated_annual_salary=Decimal("60000000"),
            dependents=1,
        ),
        Employee(
            company_id=test_company.company_id,
            code="E002",
            name="Park Soyeon",
            department="Care",
            position="Caregiver",
            estimated_annual_salary=None,
            dependents=None,
        ),
    ]
    session.add_all(employees)
    await session.commit()
    return employees


@pytest.fixture
def employee_refs(test_employees: list[Employee]) -> list[EmployeeRef]:
    return [EmployeeRef.from_model(e) for e in test_employees]
