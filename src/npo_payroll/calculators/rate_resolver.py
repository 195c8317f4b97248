"""Insurance rate profile resolution with built-in defaults."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.calculators.rounding import percent_to_rate
from npo_payroll.calculators.types import CategoryRate, InsuranceCategory, RateProfile
from npo_payroll.models import InsuranceRateProfile

logger = logging.getLogger(__name__)

# ORM column prefix per category
_COLUMN_PREFIX: dict[InsuranceCategory, str] = {
    InsuranceCategory.NATIONAL_PENSION: "national_pension",
    InsuranceCategory.HEALTH_INSURANCE: "health_insurance",
    InsuranceCategory.LONG_TERM_CARE: "long_term_care",
    InsuranceCategory.EMPLOYMENT_INSURANCE: "employment_insurance",
    InsuranceCategory.INDUSTRIAL_ACCIDENT: "industrial_accident",
}


class ProfileNotFoundError(Exception):
    """Raised when updating a profile id that does not exist."""

    def __init__(self, profile_id: int):
        self.profile_id = profile_id
        super().__init__(f"Insurance rate profile {profile_id} not found")


@dataclass(frozen=True)
class InsuranceRateDefaults:
    """Rates and floors used when a company has no active profile.

    Long-term care is charged on taxable earnings like the other categories.
    """

    national_pension: CategoryRate = CategoryRate(
        employee_rate=Decimal("0.045"),
        employer_rate=Decimal("0.045"),
        min_base_amount=Decimal("400000"),
        min_premium=Decimal("36000"),
    )
    health_insurance: CategoryRate = CategoryRate(
        employee_rate=Decimal("0.03545"),
        employer_rate=Decimal("0.03545"),
        min_base_amount=Decimal("279266"),
        min_premium=Decimal("19780"),
    )
    long_term_care: CategoryRate = CategoryRate(
        employee_rate=Decimal("0.06135"),
        employer_rate=Decimal("0.06135"),
    )
    employment_insurance: CategoryRate = CategoryRate(
        employee_rate=Decimal("0.009"),
        employer_rate=Decimal("0.0115"),
        min_base_amount=Decimal("400000"),
        min_premium=Decimal("18000"),
    )
    industrial_accident: CategoryRate = CategoryRate(
        employee_rate=Decimal("0"),
        employer_rate=Decimal("0.0726"),
    )

    def rates(self) -> dict[InsuranceCategory, CategoryRate]:
        return {category: getattr(self, category.value) for category in InsuranceCategory}

    def to_profile(self, company_id: int, effective_from: date | None = None) -> RateProfile:
        return RateProfile(
            company_id=company_id,
            rates=self.rates(),
            effective_from=effective_from or datetime.now(timezone.utc).date(),
        )


def category_rate_from_percent(
    employee_percent: Decimal,
    employer_percent: Decimal,
    min_base_amount: Decimal = Decimal("0"),
    min_premium: Decimal = Decimal("0"),
) -> CategoryRate:
    """Build a category rate from percentages as edited by the preparer."""
    return CategoryRate(
        employee_rate=percent_to_rate(employee_percent),
        employer_rate=percent_to_rate(employer_percent),
        min_base_amount=Decimal(min_base_amount),
        min_premium=Decimal(min_premium),
    )


class RateProfileRepository(Protocol):
    """Storage for insurance rate profiles."""

    async def get_active_profile(self, company_id: int) -> RateProfile | None: ...

    async def save_profile(self, profile: RateProfile) -> RateProfile: ...


class SqlRateProfileRepository:
    """Rate profile storage backed by the ``insurance_rate_profile`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_profile(self, company_id: int) -> RateProfile | None:
        """Latest ``effective_from`` among the rows with a null ``effective_to``."""
        result = await self.session.execute(
            select(InsuranceRateProfile)
            .where(
                InsuranceRateProfile.company_id == company_id,
                InsuranceRateProfile.effective_to.is_(None),
            )
            .order_by(
                InsuranceRateProfile.effective_from.desc(),
                InsuranceRateProfile.profile_id.desc(),
            )
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return self._to_profile(row) if row is not None else None

    async def save_profile(self, profile: RateProfile) -> RateProfile:
        """Insert when the profile has no id, update the existing row otherwise."""
        if profile.profile_id is None:
            row = InsuranceRateProfile(company_id=profile.company_id)
            self.session.add(row)
        else:
            row = await self.session.get(InsuranceRateProfile, profile.profile_id)
            if row is None:
                raise ProfileNotFoundError(profile.profile_id)

        for category, rate in profile.rates.items():
            prefix = _COLUMN_PREFIX[category]
            setattr(row, f"{prefix}_rate_employee", rate.employee_rate)
            setattr(row, f"{prefix}_rate_employer", rate.employer_rate)
            setattr(row, f"{prefix}_min_base_amount", rate.min_base_amount)
            setattr(row, f"{prefix}_min_premium", rate.min_premium)
        row.effective_from = profile.effective_from
        row.effective_to = profile.effective_to
        row.updated_at = datetime.now(timezone.utc)

        await self.session.flush()
        await self.session.commit()
        return self._to_profile(row)

    @staticmethod
    def _to_profile(row: InsuranceRateProfile) -> RateProfile:
        rates = {}
        for category, prefix in _COLUMN_PREFIX.items():
            rates[category] = CategoryRate(
                employee_rate=Decimal(getattr(row, f"{prefix}_rate_employee")),
                employer_rate=Decimal(getattr(row, f"{prefix}_rate_employer")),
                min_base_amount=Decimal(getattr(row, f"{prefix}_min_base_amount")),
                min_premium=Decimal(getattr(row, f"{prefix}_min_premium")),
            )
        return RateProfile(
            company_id=row.company_id,
            rates=rates,
            effective_from=row.effective_from,
            effective_to=row.effective_to,
            profile_id=row.profile_id,
        )


class InsuranceRateResolver:
    """Resolves the currently effective insurance rates for a company.

    Resolution always returns a usable profile: when no active row exists or
    storage cannot be read, the injected defaults are returned without being
    persisted. Results are cached per company until ``invalidate`` is called.
    """

    def __init__(
        self,
        repository: RateProfileRepository,
        defaults: InsuranceRateDefaults | None = None,
    ):
        self.repository = repository
        self.defaults = defaults or InsuranceRateDefaults()
        self._cache: dict[int, RateProfile] = {}

    @classmethod
    def for_session(
        cls,
        session: AsyncSession,
        defaults: InsuranceRateDefaults | None = None,
    ) -> InsuranceRateResolver:
        return cls(SqlRateProfileRepository(session), defaults)

    async def resolve(self, company_id: int) -> RateProfile:
        if company_id in self._cache:
            return self._cache[company_id]

        try:
            profile = await self.repository.get_active_profile(company_id)
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not read insurance rates for company %s (%s), using defaults",
                company_id,
                exc,
            )
            # Not cached, so the next resolve retries storage.
            return self.defaults.to_profile(company_id)

        if profile is None:
            logger.debug("No active insurance profile for company %s, using defaults", company_id)
            profile = self.defaults.to_profile(company_id)

        self._cache[company_id] = profile
        return profile

    async def save(self, profile: RateProfile) -> RateProfile:
        saved = await self.repository.save_profile(profile)
        self._cache[saved.company_id] = saved
        logger.info(
            "Saved insurance profile %s for company %s", saved.profile_id, saved.company_id
        )
        return saved

    def invalidate(self, company_id: int | None = None) -> None:
        if company_id is None:
            self._cache.clear()
        else:
            self._cache.pop(company_id, None)
