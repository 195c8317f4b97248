"""Simplified withholding-tax table keyed by monthly income and dependents.

The table file is a JSON list of records::

    [
        {"MinMonthlyIncome": 0, "MaxMonthlyIncome": 1060000,
         "WithholdingTax": [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0]},
        ...
    ]

``WithholdingTax[i]`` is the monthly tax for ``i + 1`` dependents. Brackets are
half-open: ``MinMonthlyIncome <= income < MaxMonthlyIncome``. Monthly income
above 10,000,000 is taxed with the piecewise high-income formula instead of the
table. A missing or unreadable file falls back to a built-in table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from npo_payroll.calculators.rounding import round_half_away_from_zero
from npo_payroll.calculators.types import ZERO
from npo_payroll.config import get_settings

logger = logging.getLogger(__name__)

MIN_DEPENDENTS = 1
MAX_DEPENDENTS = 11

HIGH_INCOME_THRESHOLD = Decimal("10000000")
OUT_OF_TABLE_RATE = Decimal("0.035")
MONTHS_PER_YEAR = Decimal("12")

# Tax at exactly 10,000,000 monthly income, indexed by dependents - 1.
BASE_TAX_AT_10M: tuple[Decimal, ...] = tuple(
    Decimal(v)
    for v in (
        1552400, 1476570, 1245840, 1215840, 1185840, 1155840,
        1125840, 1095840, 1065840, 1035840, 1005840,
    )
)


@dataclass(frozen=True)
class HighIncomeBand:
    """One marginal band of the high-income formula.

    ``add = base_add + (income - lower) * factor * rate``
    """

    upper: Decimal | None  # None = no upper limit
    lower: Decimal
    base_add: Decimal
    rate: Decimal
    factor: Decimal = Decimal("1")


HIGH_INCOME_BANDS: tuple[HighIncomeBand, ...] = (
    HighIncomeBand(Decimal("14000000"), Decimal("10000000"), Decimal("0"), Decimal("0.35"), Decimal("0.98")),
    HighIncomeBand(Decimal("28000000"), Decimal("14000000"), Decimal("1372000"), Decimal("0.38"), Decimal("0.98")),
    HighIncomeBand(Decimal("30000000"), Decimal("28000000"), Decimal("6585600"), Decimal("0.40"), Decimal("0.98")),
    HighIncomeBand(Decimal("45000000"), Decimal("30000000"), Decimal("7369600"), Decimal("0.40")),
    HighIncomeBand(Decimal("87000000"), Decimal("45000000"), Decimal("13369600"), Decimal("0.42")),
    HighIncomeBand(None, Decimal("87000000"), Decimal("31009600"), Decimal("0.45")),
)


@dataclass(frozen=True)
class TaxBracket:
    """Monthly withholding for an income range, one column per dependents count."""

    min_monthly_income: Decimal
    max_monthly_income: Decimal
    tax_by_dependents: tuple[Decimal, ...]

    def contains(self, monthly_income: Decimal) -> bool:
        return self.min_monthly_income <= monthly_income < self.max_monthly_income


class TaxBracketRecord(BaseModel):
    """One record of the tax table file."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    min_monthly_income: Decimal = Field(alias="MinMonthlyIncome", ge=0)
    max_monthly_income: Decimal = Field(alias="MaxMonthlyIncome")
    withholding_tax: list[Decimal] = Field(
        alias="WithholdingTax",
        min_length=MAX_DEPENDENTS,
        max_length=MAX_DEPENDENTS,
    )

    @model_validator(mode="after")
    def _check_range(self) -> TaxBracketRecord:
        if self.max_monthly_income <= self.min_monthly_income:
            raise ValueError("MaxMonthlyIncome must be greater than MinMonthlyIncome")
        return self

    def to_bracket(self) -> TaxBracket:
        return TaxBracket(
            min_monthly_income=self.min_monthly_income,
            max_monthly_income=self.max_monthly_income,
            tax_by_dependents=tuple(self.withholding_tax),
        )


_RECORDS = TypeAdapter(list[TaxBracketRecord])


def _row(*values: int) -> tuple[Decimal, ...]:
    return tuple(Decimal(v) for v in values)


FALLBACK_BRACKETS: tuple[TaxBracket, ...] = (
    TaxBracket(Decimal("0"), Decimal("1060000"), _row(0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0)),
    TaxBracket(
        Decimal("1060000"),
        Decimal("3000000"),
        _row(41630, 24110, 9520, 5770, 2400, 0, 0, 0, 0, 0, 0),
    ),
    TaxBracket(
        Decimal("3000000"),
        Decimal("5000000"),
        _row(159340, 129370, 80930, 67550, 54170, 40790, 27410, 14030, 7580, 3830, 1150),
    ),
    TaxBracket(
        Decimal("5000000"),
        Decimal("10000000"),
        _row(364490, 321150, 260630, 233130, 205630, 178130, 150630, 123130, 95630, 68130, 40630),
    ),
    TaxBracket(HIGH_INCOME_THRESHOLD, Decimal("10020000"), BASE_TAX_AT_10M),
)


def clamp_dependents(dependents: int | None) -> int:
    """Clamp a dependents count into the table's 1..11 columns."""
    if dependents is None:
        return MIN_DEPENDENTS
    return max(MIN_DEPENDENTS, min(MAX_DEPENDENTS, int(dependents)))


def high_income_tax(monthly_income: Decimal, dependents: int | None) -> Decimal:
    """Monthly withholding for income at or above the 10,000,000 threshold."""
    index = clamp_dependents(dependents) - 1
    base = BASE_TAX_AT_10M[index]

    band = HIGH_INCOME_BANDS[-1]
    for candidate in HIGH_INCOME_BANDS:
        if candidate.upper is not None and monthly_income <= candidate.upper:
            band = candidate
            break

    excess = monthly_income - band.lower
    add = band.base_add + excess * band.factor * band.rate
    return round_half_away_from_zero(base + add)


class TaxBracketTable:
    """Immutable bracket table with the withholding lookup."""

    def __init__(self, brackets: Sequence[TaxBracket], source: str = "fallback"):
        self._brackets: tuple[TaxBracket, ...] = tuple(
            sorted(brackets, key=lambda b: b.min_monthly_income)
        )
        self.source = source

    @property
    def brackets(self) -> tuple[TaxBracket, ...]:
        return self._brackets

    @property
    def is_fallback(self) -> bool:
        return self.source == "fallback"

    @classmethod
    def fallback(cls) -> TaxBracketTable:
        return cls(FALLBACK_BRACKETS, source="fallback")

    @classmethod
    def load(cls, path: Path | str | None) -> TaxBracketTable:
        """Load brackets from a JSON file; never raises.

        Any read, parse or validation failure, or an empty list, yields the
        built-in fallback table.
        """
        if path is None:
            return cls.fallback()

        path = Path(path)
        try:
            records = _RECORDS.validate_json(path.read_bytes())
        except FileNotFoundError:
            logger.info("Tax table %s not found, using built-in table", path)
            return cls.fallback()
        except (OSError, ValidationError, ValueError) as exc:
            logger.warning("Tax table %s is unreadable (%s), using built-in table", path, exc)
            return cls.fallback()

        if not records:
            logger.warning("Tax table %s is empty, using built-in table", path)
            return cls.fallback()

        logger.debug("Loaded %d tax brackets from %s", len(records), path)
        return cls([r.to_bracket() for r in records], source=str(path))

    def find_bracket(self, monthly_income: Decimal) -> TaxBracket | None:
        for bracket in self._brackets:
            if bracket.contains(monthly_income):
                return bracket
        return None

    def lookup(self, annual_salary: Decimal | None, dependents: int | None) -> Decimal:
        """Monthly withholding tax for an annual salary and dependents count."""
        if annual_salary is None or annual_salary <= 0:
            return ZERO

        monthly_income = Decimal(annual_salary) / MONTHS_PER_YEAR
        index = clamp_dependents(dependents) - 1

        if monthly_income > HIGH_INCOME_THRESHOLD:
            return high_income_tax(monthly_income, dependents)

        bracket = self.find_bracket(monthly_income)
        if bracket is not None:
            return bracket.tax_by_dependents[index]

        return round_half_away_from_zero(monthly_income * OUT_OF_TABLE_RATE)


@lru_cache(maxsize=1)
def get_tax_table() -> TaxBracketTable:
    """Process-wide tax table, loaded once from the configured path."""
    return TaxBracketTable.load(get_settings().tax_table_path)
