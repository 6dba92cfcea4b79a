"""Composite ranking score built from declarative threshold tiers."""

from typing import Any, Mapping, Optional, Sequence

from .config import MAX_COMPOSITE_SCORE, SCORE_TIERS, ScoreBand, ScoreTier
from .quality_gate import is_number


def _band_matches(band: ScoreBand, value: float) -> bool:
    if band.gt is not None and not value > band.gt:
        return False
    if band.lt is not None and not value < band.lt:
        return False
    return True


def score_tier(tier: ScoreTier, value: Optional[Any]) -> int:
    """Points for one tier; the first matching band wins."""
    if not is_number(value):
        return tier.default_points
    for band in tier.bands:
        if _band_matches(band, value):
            return band.points
    return tier.default_points


def explain_composite_score(
    values: Mapping[str, Any], tiers: Sequence[ScoreTier] = SCORE_TIERS
) -> dict[str, int]:
    """Per-tier point allocation, keyed by tier name."""
    return {tier.name: score_tier(tier, values.get(tier.field)) for tier in tiers}


def calculate_composite_score(
    values: Mapping[str, Any], tiers: Sequence[ScoreTier] = SCORE_TIERS
) -> int:
    """
    Calculate the composite ranking score for a record.

    Args:
        values: Record fields keyed by tracked field name
        tiers: Tier table, defaults to SCORE_TIERS

    Returns:
        Composite score from 0 to 100
    """
    total = sum(explain_composite_score(values, tiers).values())
    return max(0, min(MAX_COMPOSITE_SCORE, total))
