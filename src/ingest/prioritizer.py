"""Refresh ordering by staleness and data-quality deficit."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .events import log_event
from .universe import Symbol

logger = logging.getLogger(__name__)

NEW_SYMBOL_SCORE = 100
MAX_STALENESS_POINTS = 50
MAX_QUALITY_POINTS = 50
STALENESS_POINTS_PER_DAY = 7


@dataclass(frozen=True)
class PriorityEntry:
    symbol: Symbol
    priority_score: int
    reason: str


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def priority_for(known: Mapping[str, Any] | None, now: datetime) -> tuple[int, str]:
    """Score one symbol from its stored record summary (None when never seen)."""
    if known is None:
        return NEW_SYMBOL_SCORE, "new_stock"

    last_updated = _parse_timestamp(known.get("lastUpdated"))
    if last_updated is None:
        age_points = MAX_STALENESS_POINTS
    else:
        days = (now - last_updated).total_seconds() / 86400
        age_points = max(0, min(MAX_STALENESS_POINTS, round(STALENESS_POINTS_PER_DAY * days)))

    quality = known.get("dataQuality") or {}
    completeness = quality.get("completenessScore") if isinstance(quality, dict) else None
    if completeness is None:
        completeness = 100
    quality_points = max(
        0, min(MAX_QUALITY_POINTS, round(MAX_QUALITY_POINTS * (1 - float(completeness) / 100)))
    )

    return age_points + quality_points, f"age:{age_points},quality:{quality_points}"


def prioritize(
    all_symbols: Iterable[Symbol],
    known_records: Iterable[Mapping[str, Any]],
    now: datetime | None = None,
) -> list[PriorityEntry]:
    """
    Rank symbols for refresh, highest priority first.

    Never-seen symbols score 100. Known symbols score staleness (7 points per
    day) plus quality deficit, each capped at 50. Ties keep input order.
    If scoring fails the symbols come back in input order with score 0.

    Args:
        all_symbols: The filtered universe
        known_records: Store summaries with symbol, lastUpdated, dataQuality
        now: Reference time (UTC); defaults to the current time

    Returns:
        PriorityEntry list sorted by priority_score descending
    """
    symbols = list(all_symbols)
    now = now or datetime.now(timezone.utc)

    try:
        known = {str(row["symbol"]): row for row in known_records}
        entries = []
        for symbol in symbols:
            score, reason = priority_for(known.get(symbol.ticker), now)
            entries.append(PriorityEntry(symbol=symbol, priority_score=score, reason=reason))
        return sorted(entries, key=lambda entry: -entry.priority_score)
    except Exception as exc:  # noqa: BLE001
        log_event(
            logger,
            "warning",
            "prioritize.fallback_unordered",
            symbols=len(symbols),
            error=str(exc),
        )
        return [PriorityEntry(symbol=s, priority_score=0, reason="unprioritized") for s in symbols]
