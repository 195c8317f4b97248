"""Company and employee models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from npo_payroll.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from npo_payroll.models.insurance import InsuranceRateProfile
    from npo_payroll.models.payroll import PayrollDraft


class Company(Base, TimestampMixin):
    """Organization whose payroll is prepared."""

    __tablename__ = "company"

    company_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    business_number: Mapped[str | None] = mapped_column(String, nullable=True)
    fiscal_year_start: Mapped[date] = mapped_column(Date, nullable=False)
    fiscal_year_end: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    employees: Mapped[list[Employee]] = relationship(back_populates="company")
    insurance_profiles: Mapped[list[InsuranceRateProfile]] = relationship(
        back_populates="company"
    )
    drafts: Mapped[list[PayrollDraft]] = relationship(back_populates="company")


class Employee(Base, TimestampMixin):
    """Employee record.

    ``dependents`` counts the employee too; a null value is read as 1.
    """

    __tablename__ = "employee"

    employee_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    department: Mapped[str | None] = mapped_column(String, nullable=True)
    position: Mapped[str | None] = mapped_column(String, nullable=True)
    estimated_annual_salary: Mapped[Decimal | None] = mapped_column(nullable=True)
    dependents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    employment_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    employment_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "code", name="employee_company_code_unique"),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="employees")
