"""Pay item catalog and payroll draft models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from npo_payroll.models.base import Base

if TYPE_CHECKING:
    from npo_payroll.models.company import Company, Employee


class PayItemSetting(Base):
    """Ordered display labels for one catalog section, stored as a JSON list."""

    __tablename__ = "pay_item_setting"

    setting_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    section_name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    items_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class PayrollDraft(Base):
    """In-progress payroll entry for one employee in one accrual month.

    ``pay_item_values_json`` maps section name to a list of amounts whose
    positions follow the catalog section order at entry time.
    """

    __tablename__ = "payroll_draft"

    draft_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    accrual_year: Mapped[int] = mapped_column(Integer, nullable=False)
    accrual_month: Mapped[int] = mapped_column(Integer, nullable=False)
    funding_source: Mapped[str] = mapped_column(String, nullable=False, default="")
    estimated_annual_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    final_income_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pay_item_values_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "employee_id",
            "accrual_year",
            "accrual_month",
            name="payroll_draft_period_unique",
        ),
        CheckConstraint(
            "accrual_month BETWEEN 1 AND 12",
            name="payroll_draft_month_check",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="drafts")
    employee: Mapped[Employee] = relationship()
