#!/usr/bin/env python3
"""
Data Quality Report
Reads the record store and the last run status, prints JSON lines
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from ingest.config import load_dotenv, load_settings
from ingest.status import read_status
from ingest.store import StockStore


def emit(event: str, **payload: Any) -> None:
    line = {"event": event, **payload}
    print(json.dumps(line, sort_keys=True, default=str), flush=True)


def build_report(store: StockStore, status_path: str) -> dict:
    """Store totals, missing-field histogram and the last run status."""
    total = store.count_all()
    missing = store.missing_field_summary()
    return {
        "records": total,
        "missing_fields": missing,
        "missing_field_ratio": {
            field: round(count / total, 4) for field, count in missing.items()
        }
        if total
        else {},
        "completeness_distribution": store.completeness_distribution(),
        "rotation_cursor": store.get_rotation_cursor(),
        "last_run": read_status(status_path),
    }


def main() -> int:
    load_dotenv(str(ROOT / ".env"))
    parser = argparse.ArgumentParser(description="Report stored record quality")
    parser.add_argument("--db-path", help="SQLite record store path")
    parser.add_argument("--status-path", help="Run status JSON path")
    args = parser.parse_args()

    settings = load_settings()
    db_path = args.db_path or settings.db_path
    if not Path(db_path).exists():
        emit("report_quality.error", error=f"database not found: {db_path}")
        return 1

    report = build_report(StockStore(db_path), args.status_path or settings.status_path)
    emit("report_quality.summary", **report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
