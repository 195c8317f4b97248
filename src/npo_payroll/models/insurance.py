"""Social insurance rate profile model."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Integer, Numeric, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from npo_payroll.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from npo_payroll.models.company import Company

# Rates are fractions (0.045 == 4.5%); edits are rounded to 3 percent places,
# so 5 fractional digits are needed, 6 leaves headroom.
RATE = Numeric(9, 6)


class InsuranceRateProfile(Base, TimestampMixin):
    """Employee/employer rates and minimum floors for one company.

    ``effective_to`` is null for the currently active row.
    """

    __tablename__ = "insurance_rate_profile"

    profile_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )

    national_pension_rate_employee: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    national_pension_rate_employer: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    health_insurance_rate_employee: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    health_insurance_rate_employer: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    long_term_care_rate_employee: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    long_term_care_rate_employer: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    employment_insurance_rate_employee: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    employment_insurance_rate_employer: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    industrial_accident_rate_employee: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    industrial_accident_rate_employer: Mapped[Decimal] = mapped_column(RATE, nullable=False)

    national_pension_min_base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    health_insurance_min_base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    long_term_care_min_base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    employment_insurance_min_base_amount: Mapped[Decimal] = mapped_column(nullable=False)
    industrial_accident_min_base_amount: Mapped[Decimal] = mapped_column(nullable=False)

    national_pension_min_premium: Mapped[Decimal] = mapped_column(nullable=False)
    health_insurance_min_premium: Mapped[Decimal] = mapped_column(nullable=False)
    long_term_care_min_premium: Mapped[Decimal] = mapped_column(nullable=False)
    employment_insurance_min_premium: Mapped[Decimal] = mapped_column(nullable=False)
    industrial_accident_min_premium: Mapped[Decimal] = mapped_column(nullable=False)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="insurance_rate_profile_effective_range",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="insurance_profiles")
