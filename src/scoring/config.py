"""Scoring configuration: tracked fields, validation policies and tier tables."""

from dataclasses import dataclass, field
from typing import Optional

# Numeric fields every StockRecord tracks for completeness.
TRACKED_FIELDS: tuple[str, ...] = (
    "price",
    "marketCap",
    "avgDollarVolume",
    "netDebtToEBITDA",
    "evToEBIT",
    "rotce",
    "peRatio",
    "priceToBook",
    "dividendYield",
    "fcfToNetIncome",
    "revenueGrowth",
    "shareCountGrowth",
)

TOTAL_TRACKED_FIELDS = len(TRACKED_FIELDS)


@dataclass(frozen=True)
class FieldPolicy:
    """Validation rules for one numeric field."""

    min_value: Optional[float] = None
    max_value: Optional[float] = None
    zero_is_placeholder: bool = False
    non_negative: bool = False


# Fields without an entry only get the numeric check.
FIELD_POLICIES: dict[str, FieldPolicy] = {
    "price": FieldPolicy(min_value=0.0, zero_is_placeholder=True, non_negative=True),
    "marketCap": FieldPolicy(min_value=0.0, zero_is_placeholder=True, non_negative=True),
    "avgDollarVolume": FieldPolicy(non_negative=True),
    "netDebtToEBITDA": FieldPolicy(),  # net cash positions are negative
    "peRatio": FieldPolicy(zero_is_placeholder=True, non_negative=True),
    "priceToBook": FieldPolicy(zero_is_placeholder=True, non_negative=True),
    "rotce": FieldPolicy(min_value=-5.0, max_value=5.0),
    "dividendYield": FieldPolicy(max_value=1.0, non_negative=True),
    "revenueGrowth": FieldPolicy(min_value=-1.0),
    "shareCountGrowth": FieldPolicy(min_value=-1.0),
}


@dataclass(frozen=True)
class ScoreBand:
    """Matches when value > gt and value < lt (unset bounds are open)."""

    points: int
    gt: Optional[float] = None
    lt: Optional[float] = None


@dataclass(frozen=True)
class ScoreTier:
    name: str
    field: str
    bands: tuple[ScoreBand, ...] = field(default_factory=tuple)
    default_points: int = 0


# First matching band wins; missing or invalid values score default_points.
SCORE_TIERS: tuple[ScoreTier, ...] = (
    ScoreTier(
        name="market_cap",
        field="marketCap",
        bands=(
            ScoreBand(20, gt=10_000_000_000),
            ScoreBand(15, gt=2_000_000_000),
            ScoreBand(10, gt=300_000_000),
        ),
        default_points=5,
    ),
    ScoreTier(
        name="leverage",
        field="netDebtToEBITDA",
        bands=(
            ScoreBand(20, lt=1.0),
            ScoreBand(15, lt=2.0),
            ScoreBand(10, lt=3.0),
        ),
        default_points=5,
    ),
    ScoreTier(
        name="valuation",
        field="peRatio",
        bands=(
            ScoreBand(20, gt=0.0, lt=15.0),
            ScoreBand(15, gt=0.0, lt=25.0),
            ScoreBand(10, gt=0.0, lt=35.0),
        ),
        default_points=5,
    ),
    ScoreTier(
        name="profitability",
        field="rotce",
        bands=(
            ScoreBand(20, gt=0.20),
            ScoreBand(15, gt=0.15),
            ScoreBand(10, gt=0.10),
        ),
        default_points=5,
    ),
    ScoreTier(
        name="book_value",
        field="priceToBook",
        bands=(
            ScoreBand(10, gt=0.0, lt=1.0),
            ScoreBand(8, gt=0.0, lt=2.0),
            ScoreBand(5, gt=0.0, lt=3.0),
        ),
        default_points=0,
    ),
    ScoreTier(
        name="growth",
        field="revenueGrowth",
        bands=(
            ScoreBand(10, gt=0.20),
            ScoreBand(8, gt=0.10),
            ScoreBand(5, gt=0.05),
        ),
        default_points=0,
    ),
)

MAX_COMPOSITE_SCORE = 100
