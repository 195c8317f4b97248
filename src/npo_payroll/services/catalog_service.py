"""Pay item catalog: ordered display labels per section."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from npo_payroll.calculators.types import PaySection
from npo_payroll.models import PayItemSetting

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_SECTION = 15

DEFAULT_ITEMS: dict[PaySection, tuple[str, ...]] = {
    PaySection.TAXABLE_EARNINGS: (
        "봉급", "가족수당", "시간외수당", "처우개선비", "특수근무수당", "명절수당", "식대",
    ),
    PaySection.NON_TAXABLE_EARNINGS: ("식대", "자가운전보조금", "출산휴가지원"),
    PaySection.INSURANCE_DEDUCTION: (
        "국민연금", "건강보험", "장기요양보험", "고용보험",
        "국민연금정산", "건강보험정산", "장기요양보험정산", "고용보험정산",
    ),
    PaySection.INCOME_TAX_DEDUCTION: (
        "소득세", "지방소득세", "중도정산소득세", "중도정산지방소득세",
        "연말정산소득세", "연말정산지방소득세",
    ),
    PaySection.EMPLOYER_INSURANCE: (
        "국민연금", "건강보험", "장기요양보험", "고용보험",
        "국민연금정산", "건강보험정산", "장기요양보험정산", "고용보험정산", "산재보험",
    ),
    PaySection.RETIREMENT: ("퇴직연금 - DC형", "퇴직연금 - DB형"),
    PaySection.FUNDING_SOURCE: ("보조금", "후원금", "시설부담"),
}


class CatalogValidationError(Exception):
    """Raised when a catalog save is rejected."""

    def __init__(self, section: str, reason: str):
        self.section = section
        self.reason = reason
        super().__init__(f"Cannot save catalog section '{section}': {reason}")


def default_items(section: str | PaySection) -> list[str]:
    """Hardcoded labels for a section; unknown sections have none."""
    parsed = PaySection.parse(section)
    if parsed is None:
        return []
    return list(DEFAULT_ITEMS[parsed])


def clean_labels(labels: list[str]) -> list[str]:
    """Drop blank labels, keeping order."""
    return [label.strip() for label in labels if label and label.strip()]


class PayItemCatalog:
    """Ordered, named label lists per section, with seeded defaults.

    Entered payroll amounts are stored by position in these lists, so
    reordering a section after entry changes what stored amounts mean.

    Reads never raise: a missing, empty or unreadable section returns the
    hardcoded defaults.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._cache: dict[str, list[str]] = {}

    async def get_items(self, section: str | PaySection) -> list[str]:
        parsed = PaySection.parse(section)
        if parsed is None:
            return []
        key = parsed.value
        if key in self._cache:
            return list(self._cache[key])

        try:
            result = await self.session.execute(
                select(PayItemSetting).where(PayItemSetting.section_name == key)
            )
            setting = result.scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.warning("Could not read catalog section %s (%s), using defaults", key, exc)
            return default_items(parsed)

        items = self._parse_items(key, setting.items_json) if setting is not None else []
        if not items:
            items = default_items(parsed)

        self._cache[key] = items
        return list(items)

    async def save_items(self, section: str | PaySection, labels: list[str]) -> list[str]:
        parsed = PaySection.parse(section)
        if parsed is None:
            raise CatalogValidationError(str(section), "unknown section")

        items = clean_labels(labels)
        if len(items) > MAX_ITEMS_PER_SECTION:
            raise CatalogValidationError(
                parsed.value,
                f"at most {MAX_ITEMS_PER_SECTION} items allowed, got {len(items)}",
            )

        await self._upsert(parsed.value, items)
        await self.session.commit()
        self._cache[parsed.value] = items
        logger.info("Saved %d items for catalog section %s", len(items), parsed.value)
        return list(items)

    async def initialize_defaults(self) -> int:
        """Seed every absent section; returns the number of sections seeded.

        A storage backend that is not ready yet is ignored.
        """
        try:
            result = await self.session.execute(select(PayItemSetting.section_name))
            existing = set(result.scalars().all())

            seeded = 0
            for section in PaySection:
                if section.value not in existing:
                    await self._upsert(section.value, default_items(section))
                    seeded += 1
            await self.session.commit()
        except SQLAlchemyError as exc:
            logger.debug("Catalog storage not ready, skipping default seeding: %s", exc)
            await self.session.rollback()
            return 0

        return seeded

    def reload(self) -> None:
        self._cache.clear()

    async def _upsert(self, key: str, items: list[str]) -> None:
        result = await self.session.execute(
            select(PayItemSetting).where(PayItemSetting.section_name == key)
        )
        setting = result.scalar_one_or_none()
        payload = json.dumps(items, ensure_ascii=False)
        now = datetime.now(timezone.utc)

        if setting is None:
            self.session.add(PayItemSetting(section_name=key, items_json=payload, updated_at=now))
        else:
            setting.items_json = payload
            setting.updated_at = now
        await self.session.flush()

    @staticmethod
    def _parse_items(key: str, raw: str) -> list[str]:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Catalog section %s holds malformed JSON, using defaults", key)
            return []
        if not isinstance(data, list):
            logger.warning("Catalog section %s is not a list, using defaults", key)
            return []
        items = clean_labels([item for item in data if isinstance(item, str)])
        return items[:MAX_ITEMS_PER_SECTION]
