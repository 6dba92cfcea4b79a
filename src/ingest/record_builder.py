"""Build one validated StockRecord from a symbol's sub-resource payloads."""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from scoring.composite import calculate_composite_score
from scoring.config import TRACKED_FIELDS
from scoring.formulas.debt_ebitda import compute_debt_to_ebitda
from scoring.quality_gate import (
    ISSUE_NOT_A_NUMBER,
    completeness_score,
    validate_fields,
)

from .events import log_event
from .fetch_executor import FetchExecutor, FetchResult
from .fmp_client import SUB_RESOURCES, first_record
from .records import DataQuality, StockRecord
from .universe import Symbol

logger = logging.getLogger(__name__)


class RecordBuildError(RuntimeError):
    """No sub-resource returned data for the symbol."""


def _raw(payload: Optional[Mapping[str, Any]], *keys: str) -> Any:
    if not payload:
        return None
    for key in keys:
        value = payload.get(key)
        if value is not None:
            return value
    return None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _ratio(numerator: Any, denominator: Any) -> float | None:
    num = _to_float(numerator)
    den = _to_float(denominator)
    if num is None or den is None or den == 0:
        return None
    return num / den


def _net_debt_to_ebitda(
    ratios: Optional[Mapping[str, Any]], financials: Optional[Mapping[str, Any]]
) -> tuple[Any, Optional[str]]:
    direct = _raw(ratios, "netDebtToEBITDA", "debtToEBITDA")
    if direct is not None:
        return direct, "reported"
    derived = compute_debt_to_ebitda(financials)
    if derived.has_all_components:
        return derived.value, derived.method
    return None, None


def _ev_to_ebit(
    key_metrics: Optional[Mapping[str, Any]], financials: Optional[Mapping[str, Any]]
) -> Any:
    direct = _raw(key_metrics, "evToEBIT", "enterpriseValueOverEBIT")
    if direct is not None:
        return direct
    ebit = _to_float(_raw(financials, "ebit", "operatingIncome"))
    if ebit is None or ebit <= 0:
        return None
    return _ratio(_raw(key_metrics, "enterpriseValue"), ebit)


def _fcf_to_net_income(
    ratios: Optional[Mapping[str, Any]], financials: Optional[Mapping[str, Any]]
) -> float | None:
    per_share = _ratio(
        _raw(ratios, "freeCashFlowPerShare"), _raw(ratios, "netIncomePerShare")
    )
    if per_share is not None:
        return per_share
    return _ratio(_raw(financials, "freeCashFlow"), _raw(financials, "netIncome"))


def extract_metrics(payloads: Mapping[str, Optional[Mapping[str, Any]]]) -> tuple[dict[str, Any], Optional[str]]:
    """Map sub-resource payloads onto the tracked fields (raw, unvalidated)."""
    profile = payloads.get("profile")
    quote = payloads.get("quote")
    ratios = payloads.get("ratios")
    financials = payloads.get("financials")
    key_metrics = payloads.get("key_metrics")
    growth = payloads.get("growth")

    price = _raw(quote, "price")
    if price is None:
        price = _raw(profile, "price")
    market_cap = _raw(quote, "marketCap")
    if market_cap is None:
        market_cap = _raw(profile, "marketCap", "mktCap")
    avg_volume = _raw(quote, "avgVolume")
    if avg_volume is None:
        avg_volume = _raw(profile, "averageVolume", "volAvg")

    avg_dollar_volume = None
    if _to_float(avg_volume) is not None and _to_float(price) is not None:
        avg_dollar_volume = _to_float(avg_volume) * _to_float(price)

    net_debt, method = _net_debt_to_ebitda(ratios, financials)

    metrics = {
        "price": price,
        "marketCap": market_cap,
        "avgDollarVolume": avg_dollar_volume,
        "netDebtToEBITDA": net_debt,
        "evToEBIT": _ev_to_ebit(key_metrics, financials),
        "rotce": _raw(key_metrics, "returnOnTangibleAssets", "returnOnInvestedCapital", "roic"),
        "peRatio": _raw(ratios, "priceToEarningsRatio", "priceEarningsRatio"),
        "priceToBook": _raw(ratios, "priceToBookRatio"),
        "dividendYield": _raw(ratios, "dividendYield"),
        "fcfToNetIncome": _fcf_to_net_income(ratios, financials),
        "revenueGrowth": _raw(growth, "revenueGrowth"),
        "shareCountGrowth": _raw(growth, "weightedAverageShsOutGrowth"),
    }
    return metrics, method


def assemble_record(
    symbol: Symbol,
    payloads: Mapping[str, Optional[Mapping[str, Any]]],
    now: datetime | None = None,
) -> StockRecord:
    """
    Combine sub-resource payloads into a validated, scored record.

    Missing payloads degrade the record: affected fields stay None and are
    listed in missing_fields. Present but invalid values are reported in
    validation_issues; non-numeric ones are stored as None.

    Args:
        symbol: The symbol being built
        payloads: Sub-resource name -> first record (or None)
        now: Timestamp for lastUpdated (UTC)

    Returns:
        The assembled StockRecord
    """
    now = now or datetime.now(timezone.utc)
    profile = payloads.get("profile") or {}

    metrics, method = extract_metrics(payloads)
    missing = [name for name in TRACKED_FIELDS if metrics.get(name) is None]
    issues = validate_fields(metrics)

    for name, field_issues in issues.items():
        if ISSUE_NOT_A_NUMBER in field_issues:
            metrics[name] = None

    scoring_values = {k: (None if k in issues else v) for k, v in metrics.items()}

    return StockRecord(
        symbol=symbol.ticker,
        name=profile.get("companyName") or symbol.display_name or None,
        exchange=profile.get("exchange") or symbol.exchange or None,
        sector=profile.get("sector"),
        industry=profile.get("industry"),
        metrics=metrics,
        net_debt_to_ebitda_method=method,
        data_quality=DataQuality(
            missing_fields=missing,
            validation_issues=issues,
            completeness_score=completeness_score(len(missing), len(issues)),
        ),
        composite_score=calculate_composite_score(scoring_values),
        last_updated=now.replace(microsecond=0).isoformat(),
    )


class RecordBuilder:
    def __init__(self, executor: FetchExecutor):
        self.executor = executor

    def fetch_payloads(
        self, symbol: Symbol, deadline: float | None = None
    ) -> dict[str, Optional[dict[str, Any]]]:
        """Fetch all sub-resources concurrently; failures map to None."""
        with ThreadPoolExecutor(max_workers=len(SUB_RESOURCES)) as pool:
            futures = {
                name: pool.submit(
                    self.executor.execute,
                    endpoint,
                    {"symbol": symbol.ticker, **params},
                    deadline,
                )
                for name, (endpoint, params) in SUB_RESOURCES.items()
            }
            results: dict[str, FetchResult] = {
                name: future.result() for name, future in futures.items()
            }

        payloads = {
            name: first_record(result.payload) if result.ok else None
            for name, result in results.items()
        }
        unavailable = sorted(name for name, payload in payloads.items() if payload is None)
        if unavailable:
            log_event(
                logger,
                "debug",
                "record.sub_resources_unavailable",
                symbol=symbol.ticker,
                unavailable=unavailable,
            )
        return payloads

    def build(
        self,
        symbol: Symbol,
        deadline: float | None = None,
        now: datetime | None = None,
    ) -> StockRecord:
        payloads = self.fetch_payloads(symbol, deadline)
        if all(payload is None for payload in payloads.values()):
            raise RecordBuildError(f"{symbol.ticker}: no sub-resource returned data")
        return assemble_record(symbol, payloads, now=now)
