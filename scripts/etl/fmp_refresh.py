#!/usr/bin/env python3
"""
FMP Rotation Refresh

Usage:
  python scripts/etl/fmp_refresh.py
  python scripts/etl/fmp_refresh.py --universe-file config/universes/us-primary.json
  python scripts/etl/fmp_refresh.py --batch-size 50 --budget-seconds 300
  python scripts/etl/fmp_refresh.py --dry-run
  python scripts/etl/fmp_refresh.py --test-rate 30
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from ingest.config import IngestSettings, load_dotenv, load_settings
from ingest.error_log import RecentErrors
from ingest.fetch_executor import FetchExecutor
from ingest.fmp_client import SUB_RESOURCES, FMPClient
from ingest.orchestrator import RunOrchestrator
from ingest.rate_control import RateController
from ingest.record_builder import RecordBuilder
from ingest.status import STATUS_COMPLETED, RunState, write_status
from ingest.store import StockStore
from ingest.universe import Symbol, fetch_universe, load_universe_file

RATE_PROBE_SYMBOLS = ("AAPL", "MSFT", "GOOGL", "AMZN", "META", "NVDA", "JPM", "V", "JNJ", "WMT")


def emit(event: str, **payload: Any) -> None:
    line = {"event": event, **payload}
    print(json.dumps(line, sort_keys=True, default=str), flush=True)


def positive_seconds(value: str) -> float:
    try:
        seconds = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not a number: {value}") from exc
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"must be greater than 0: {value}")
    return seconds


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh one rotation batch of FMP stock records")
    parser.add_argument(
        "--universe-file",
        help="JSON symbol snapshot (default: fetch the upstream stock list)",
    )
    parser.add_argument("--config", help="JSON settings file (default: config/ingest.json)")
    parser.add_argument("--db-path", help="SQLite record store path")
    parser.add_argument("--status-path", help="Run status JSON path")
    parser.add_argument("--batch-size", type=int, help="Rotation batch size")
    parser.add_argument("--budget-seconds", type=positive_seconds, help="Run wall-clock budget")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Select the batch without fetching or advancing the rotation cursor",
    )
    parser.add_argument(
        "--test-rate",
        type=positive_seconds,
        metavar="SECONDS",
        help="Probe the achievable call rate for SECONDS and exit",
    )
    return parser.parse_args(argv)


def apply_overrides(settings: IngestSettings, args: argparse.Namespace) -> IngestSettings:
    overrides: dict[str, Any] = {}
    if args.db_path:
        overrides["db_path"] = args.db_path
    if args.status_path:
        overrides["status_path"] = args.status_path
    if args.batch_size is not None:
        overrides["rotation_batch_size"] = args.batch_size
    if args.budget_seconds is not None:
        overrides["run_budget_seconds"] = args.budget_seconds
    return replace(settings, **overrides).normalized() if overrides else settings


def probe_call_rate(
    executor: FetchExecutor, controller: RateController, seconds: float
) -> dict[str, Any]:
    """Fire quote requests at the current concurrency for a fixed duration."""
    endpoint, params = SUB_RESOURCES["quote"]
    started = time.monotonic()
    deadline = started + seconds
    calls = 0
    failures = 0

    with ThreadPoolExecutor(max_workers=controller.settings.max_concurrency) as pool:
        while time.monotonic() < deadline:
            batch = [
                RATE_PROBE_SYMBOLS[(calls + i) % len(RATE_PROBE_SYMBOLS)]
                for i in range(controller.concurrency)
            ]
            results = list(
                pool.map(
                    lambda symbol: executor.execute(endpoint, {"symbol": symbol, **params}, deadline),
                    batch,
                )
            )
            calls += len(results)
            failures += sum(1 for result in results if not result.ok)

    elapsed = max(time.monotonic() - started, 1e-9)
    stats = controller.stats()
    return {
        "seconds": round(elapsed, 2),
        "calls": calls,
        "failures": failures,
        "calls_per_minute": round(calls * 60 / elapsed, 1),
        "throttles": stats["throttles"],
        "final_concurrency": stats["concurrency"],
        "final_backoff_seconds": stats["backoffSeconds"],
    }


def resolve_symbols(args: argparse.Namespace, executor: FetchExecutor) -> list[Symbol]:
    if args.universe_file:
        return load_universe_file(args.universe_file)
    return fetch_universe(executor)


def main(argv: list[str] | None = None) -> int:
    load_dotenv(str(ROOT / ".env"))
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = parse_args(argv)

    settings = apply_overrides(load_settings(config_path=args.config), args)
    try:
        client = FMPClient(
            settings.fmp_api_key,
            base_url=settings.fmp_base_url,
            timeout=settings.request_timeout_seconds,
        )
    except ValueError as exc:
        emit("fmp_refresh.config_error", error=str(exc))
        return 1

    errors = RecentErrors()
    controller = RateController(settings)
    executor = FetchExecutor(client, controller, errors=errors)

    try:
        if args.test_rate is not None:
            emit("fmp_refresh.rate_test", **probe_call_rate(executor, controller, args.test_rate))
            return 0

        try:
            symbols = resolve_symbols(args, executor)
        except (OSError, ValueError, RuntimeError) as exc:
            emit("fmp_refresh.universe_error", error=str(exc))
            return 2
        emit("fmp_refresh.universe", symbols=len(symbols))

        def publish(state: RunState) -> None:
            status = state.to_status()
            write_status(settings.status_path, status)
            emit("fmp_refresh.progress", status=state.status, **status["progress"])

        store = StockStore(settings.db_path)
        orchestrator = RunOrchestrator(
            store,
            RecordBuilder(executor),
            controller,
            settings=settings,
            errors=errors,
            on_progress=None if args.dry_run else publish,
        )
        state = orchestrator.run(symbols, dry_run=args.dry_run)
    finally:
        client.close()

    summary = state.to_status()
    summary.pop("recentErrors", None)
    if args.dry_run:
        summary["symbols"] = state.symbols
    summary["stored_records"] = store.count_all()
    summary["api_calls_total"] = client.calls_made
    emit("fmp_refresh.summary", **summary)

    return 0 if state.status == STATUS_COMPLETED else 2


if __name__ == "__main__":
    raise SystemExit(main())
