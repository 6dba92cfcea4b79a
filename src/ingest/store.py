"""SQLite persistence for stock records and cross-run ingestion state."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from .records import StockRecord

logger = logging.getLogger(__name__)

ROTATION_CURSOR_KEY = "rotation_cursor"


class StoreError(RuntimeError):
    """A write to the record store failed."""


class StockStore:
    """
    SQLite store keyed by symbol.

    Records are written wholesale (INSERT OR REPLACE), so repeating a bulk
    upsert with the same records leaves the table unchanged.
    """

    def __init__(self, db_path: str = "data/stocks.db"):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS stock_records (
                    symbol TEXT PRIMARY KEY,
                    exchange TEXT,
                    name TEXT,
                    sector TEXT,
                    industry TEXT,
                    composite_score INTEGER,
                    completeness_score INTEGER,
                    last_updated TEXT NOT NULL,
                    record_json TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_stock_records_last_updated
                ON stock_records(last_updated)
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ingest_state (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def bulk_upsert(self, records: Iterable[StockRecord]) -> int:
        """
        Write records in one transaction; all or nothing.

        Returns:
            Number of records written

        Raises:
            StoreError: the transaction failed and was rolled back
        """
        rows = []
        for record in records:
            payload = record.to_dict()
            rows.append(
                (
                    record.symbol,
                    record.exchange,
                    record.name,
                    record.sector,
                    record.industry,
                    record.composite_score,
                    record.data_quality.completeness_score,
                    record.last_updated,
                    json.dumps(payload, sort_keys=True, default=str),
                )
            )
        if not rows:
            return 0

        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.executemany(
                    """
                    INSERT OR REPLACE INTO stock_records
                    (symbol, exchange, name, sector, industry, composite_score,
                     completeness_score, last_updated, record_json)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise StoreError(f"bulk upsert of {len(rows)} records failed: {exc}") from exc

        logger.debug("Upserted %d records into %s", len(rows), self.db_path)
        return len(rows)

    def get(self, symbol: str) -> Optional[StockRecord]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT record_json FROM stock_records WHERE symbol = ?",
                (symbol,),
            ).fetchone()
        if row is None:
            return None
        return StockRecord.from_dict(json.loads(row[0]))

    def read_known_symbols(self) -> list[dict[str, Any]]:
        """Summaries used for prioritization: symbol, lastUpdated, dataQuality."""
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT symbol, last_updated, record_json FROM stock_records"
            ).fetchall()

        known = []
        for symbol, last_updated, record_json in rows:
            try:
                quality = json.loads(record_json).get("dataQuality") or {}
            except (TypeError, ValueError):
                quality = {}
            known.append(
                {"symbol": symbol, "lastUpdated": last_updated, "dataQuality": quality}
            )
        return known

    def count_all(self) -> int:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT COUNT(*) FROM stock_records").fetchone()
        return int(row[0]) if row else 0

    def get_state(self, key: str, default: Any = None) -> Any:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT value_json FROM ingest_state WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return default
        return json.loads(row[0])

    def set_state(self, key: str, value: Any) -> None:
        updated_at = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO ingest_state (key, value_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key)
                DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at
                """,
                (key, json.dumps(value, default=str), updated_at),
            )
            conn.commit()

    def get_rotation_cursor(self) -> int:
        value = self.get_state(ROTATION_CURSOR_KEY, 0)
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    def set_rotation_cursor(self, cursor: int) -> None:
        self.set_state(ROTATION_CURSOR_KEY, int(cursor))

    def missing_field_summary(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for row in self.read_known_symbols():
            for field in row["dataQuality"].get("missingFields") or []:
                counts[field] = counts.get(field, 0) + 1
        return dict(sorted(counts.items(), key=lambda item: (-item[1], item[0])))

    def completeness_distribution(self) -> dict[str, int]:
        """Record counts per completeness bucket (0-49, 50-74, 75-99, 100)."""
        buckets = {"0-49": 0, "50-74": 0, "75-99": 0, "100": 0}
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT completeness_score FROM stock_records").fetchall()
        for (score,) in rows:
            score = int(score or 0)
            if score >= 100:
                buckets["100"] += 1
            elif score >= 75:
                buckets["75-99"] += 1
            elif score >= 50:
                buckets["50-74"] += 1
            else:
                buckets["0-49"] += 1
        return buckets
