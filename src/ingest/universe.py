"""Symbol universe: upstream stock list or JSON snapshot, with exclusion filters."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable

from .events import log_event
from .fmp_client import STOCK_LIST_ENDPOINT

if TYPE_CHECKING:
    from .fetch_executor import FetchExecutor

logger = logging.getLogger(__name__)

PRIMARY_EXCHANGES = ("NYSE", "NASDAQ")

EXCHANGE_ALIASES = {
    "NYSE": "NYSE",
    "XNYS": "NYSE",
    "NYQ": "NYSE",
    "NEW YORK STOCK EXCHANGE": "NYSE",
    "NASDAQ": "NASDAQ",
    "XNAS": "NASDAQ",
    "NMS": "NASDAQ",
    "NGS": "NASDAQ",
    "NCM": "NASDAQ",
    "NGM": "NASDAQ",
    "NASDAQ GLOBAL SELECT": "NASDAQ",
    "NASDAQ GLOBAL MARKET": "NASDAQ",
    "NASDAQ CAPITAL MARKET": "NASDAQ",
}

_FUND_NAME = re.compile(r"\b(ETF|ETN)\b", re.IGNORECASE)
_NON_COMMON_TICKER = re.compile(r"[-.^/]")


@dataclass(frozen=True)
class Symbol:
    ticker: str
    exchange: str = ""
    display_name: str = ""


def normalize_exchange(name: Any) -> str:
    """Map upstream exchange names to a short code; unknown names pass through upper-cased."""
    text = str(name or "").strip().upper()
    return EXCHANGE_ALIASES.get(text, text)


def _row_to_symbol(row: Any) -> Symbol | None:
    if isinstance(row, str):
        ticker = row.strip().upper()
        return Symbol(ticker=ticker) if ticker else None
    if not isinstance(row, dict):
        return None
    ticker = str(row.get("symbol") or row.get("ticker") or "").strip().upper()
    if not ticker:
        return None
    exchange = normalize_exchange(
        row.get("exchangeShortName") or row.get("exchange") or ""
    )
    name = str(row.get("name") or row.get("companyName") or row.get("displayName") or "")
    return Symbol(ticker=ticker, exchange=exchange, display_name=name.strip())


def exclusion_reason(row: Any) -> str | None:
    """Why a stock-list row is excluded, or None when it is kept."""
    symbol = _row_to_symbol(row)
    if symbol is None:
        return "no_ticker"
    if isinstance(row, dict):
        row_type = row.get("type")
        if row_type is not None and str(row_type).lower() != "stock":
            return "not_common_stock"
        if symbol.exchange and symbol.exchange not in PRIMARY_EXCHANGES:
            return "non_primary_exchange"
    if _NON_COMMON_TICKER.search(symbol.ticker):
        return "share_class_or_unit"
    if _FUND_NAME.search(symbol.display_name):
        return "fund"
    return None


def filter_symbols(rows: Iterable[Any]) -> list[Symbol]:
    """Apply exclusion filters and de-duplicate by ticker (first row wins)."""
    kept: list[Symbol] = []
    seen: set[str] = set()
    excluded: dict[str, int] = {}

    for row in rows:
        reason = exclusion_reason(row)
        if reason is not None:
            excluded[reason] = excluded.get(reason, 0) + 1
            continue
        symbol = _row_to_symbol(row)
        if symbol is None or symbol.ticker in seen:
            continue
        seen.add(symbol.ticker)
        kept.append(symbol)

    log_event(logger, "info", "universe.filtered", kept=len(kept), excluded=excluded)
    return kept


def load_universe_file(path: str | Path) -> list[Symbol]:
    p = Path(path)
    data = json.loads(p.read_text(encoding="utf-8"))
    rows = data.get("symbols") if isinstance(data, dict) else data
    if not isinstance(rows, list):
        raise ValueError(f"Universe file has no symbol list: {p}")
    return filter_symbols(rows)


def fetch_universe(executor: "FetchExecutor", deadline: float | None = None) -> list[Symbol]:
    result = executor.execute(STOCK_LIST_ENDPOINT, deadline=deadline)
    if not result.ok:
        raise RuntimeError(f"Symbol list fetch failed: {result.error.message}")
    if not isinstance(result.payload, list):
        raise RuntimeError("Symbol list response is not a list")
    return filter_symbols(result.payload)
