# ============================================================================
# FORMULA: Debt / EBITDA from raw statement components
# CATEGORY: Leverage
# INPUT FIELDS (latest-period financials):
#   - totalDebt | longTermDebt/debt + shortTermDebt/currentDebt
#   - ebitda
#   - operatingIncome | ebit, depreciationAndAmortization
#   - netIncome, interestExpense, incomeTaxExpense, depreciation, amortization
# ============================================================================

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class DerivedMetric:
    value: float | None
    method: str | None
    components: dict[str, float | None] = field(default_factory=dict)
    has_all_components: bool = False


def _num(data: Mapping[str, Any], *keys: str) -> float | None:
    """First finite numeric value among keys."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, bool) or value is None:
            continue
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            continue
        if math.isfinite(parsed):
            return parsed
    return None


def _total_debt(financials: Mapping[str, Any]) -> float:
    direct = _num(financials, "totalDebt")
    if direct is not None:
        return direct
    long_term = _num(financials, "longTermDebt", "debt") or 0.0
    short_term = _num(financials, "shortTermDebt", "currentDebt") or 0.0
    return long_term + short_term


def _ebitda_candidates(financials: Mapping[str, Any]) -> list[tuple[str, float]]:
    candidates: list[tuple[str, float]] = []

    direct = _num(financials, "ebitda")
    if direct is not None and direct > 0:
        candidates.append(("direct", direct))

    operating = _num(financials, "operatingIncome", "ebit")
    if operating is not None:
        d_and_a = _num(financials, "depreciationAndAmortization") or 0.0
        candidates.append(("operatingIncome", operating + d_and_a))

    net_income = _num(financials, "netIncome")
    add_backs = [
        _num(financials, key)
        for key in (
            "interestExpense",
            "incomeTaxExpense",
            "depreciation",
            "amortization",
        )
    ]
    if net_income is not None and any(v is not None for v in add_backs):
        candidates.append(
            ("netIncome", net_income + sum(v for v in add_backs if v is not None))
        )

    return candidates


def compute_debt_to_ebitda(financials: Mapping[str, Any] | None) -> DerivedMetric:
    """
    Estimate debt/EBITDA when no direct ratio is available.

    EBITDA is taken from the first usable source: reported EBITDA, operating
    income plus D&A, or net income with interest, taxes and D&A added back.
    Nothing is guessed: without positive debt and positive EBITDA the result
    has value None.

    Args:
        financials: Latest-period statement fields (may be None)

    Returns:
        DerivedMetric with value, method and the components used
    """
    if not financials:
        return DerivedMetric(value=None, method=None)

    total_debt = _total_debt(financials)
    candidates = _ebitda_candidates(financials)
    method, ebitda = next(
        ((m, v) for m, v in candidates if v > 0), (None, None)
    )

    components = {"totalDebt": total_debt, "ebitda": ebitda}
    has_all = total_debt > 0 and ebitda is not None and ebitda > 0
    if not has_all:
        return DerivedMetric(
            value=None, method=method, components=components, has_all_components=False
        )

    return DerivedMetric(
        value=round(total_debt / ebitda, 4),
        method=method,
        components=components,
        has_all_components=True,
    )
