"""Run orchestration: rotation batch, concurrency windows, budget and flushes."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .config import IngestSettings
from .error_log import RecentErrors
from .events import log_event
from .prioritizer import prioritize
from .rate_control import RateController
from .record_builder import RecordBuilder
from .records import StockRecord
from .rotation import select_batch
from .status import STATUS_COMPLETED, STATUS_ERROR, STATUS_RUNNING, RunState
from .store import StockStore
from .universe import Symbol

logger = logging.getLogger(__name__)

THROTTLE_COOLDOWN_WINDOW_SECONDS = 5.0
THROTTLE_COOLDOWN_SECONDS = 0.1


class RunOrchestrator:
    """
    Drives one ingestion run: idle -> running -> completed | error.

    Windows are sized from the controller's current concurrency, read fresh
    before each window. The run budget is checked before a window starts;
    a window that has started is always allowed to finish and flush.
    """

    def __init__(
        self,
        store: StockStore,
        builder: RecordBuilder,
        controller: RateController,
        settings: IngestSettings | None = None,
        errors: RecentErrors | None = None,
        on_progress: Optional[Callable[[RunState], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.builder = builder
        self.controller = controller
        self.settings = (settings or controller.settings).normalized()
        self.errors = errors if errors is not None else builder.executor.errors
        self.on_progress = on_progress
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._run_lock = threading.Lock()
        self.state = RunState()

    def _publish(self) -> None:
        self.state.rate_stats = self.controller.stats()
        self.state.recent_errors = self.errors.recent()
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.state)
        except Exception as exc:  # noqa: BLE001
            log_event(
                logger,
                "warning",
                "run.status_publish_failed",
                status=self.state.status,
                error=str(exc),
            )

    def plan(self, symbols: Iterable[Symbol], advance_cursor: bool = True) -> list[Symbol]:
        """Prioritize and carve out this run's rotation batch."""
        entries = prioritize(symbols, self.store.read_known_symbols(), now=self._now())
        cursor = self.store.get_rotation_cursor()
        batch, new_cursor = select_batch(entries, self.settings.rotation_batch_size, cursor)
        if advance_cursor and new_cursor != cursor:
            self.store.set_rotation_cursor(new_cursor)
        log_event(
            logger,
            "info",
            "run.batch_selected",
            universe=len(entries),
            batch=len(batch),
            cursor=cursor,
            next_cursor=new_cursor,
        )
        return [entry.symbol for entry in batch]

    def _process_window(self, window: list[Symbol], deadline: float) -> list[StockRecord]:
        records: list[StockRecord] = []
        with ThreadPoolExecutor(max_workers=len(window)) as pool:
            built_at = self._now()
            futures = {
                pool.submit(self.builder.build, symbol, deadline, built_at): symbol
                for symbol in window
            }
            for future in as_completed(futures):
                symbol = futures[future]
                try:
                    records.append(future.result())
                except Exception as exc:  # noqa: BLE001
                    self.state.failed += 1
                    self.errors.record("record", symbol.ticker, str(exc))
                    log_event(
                        logger,
                        "warning",
                        "run.symbol_failed",
                        symbol=symbol.ticker,
                        error=str(exc),
                    )
        return records

    def run(self, symbols: Iterable[Symbol], dry_run: bool = False) -> RunState:
        """
        Execute one run over the rotation batch drawn from symbols.

        Hitting the budget ends the run as completed with remaining > 0.
        Unexpected failures (including a failed flush) end it as error with
        progress preserved. Never raises for run-level failures.

        Raises:
            RuntimeError: a run is already in progress on this orchestrator
        """
        if not self._run_lock.acquire(blocking=False):
            raise RuntimeError("an ingestion run is already in progress")

        try:
            self.state = RunState(status=STATUS_RUNNING, start_time=self._now())
            started = self._clock()
            deadline = started + self.settings.run_budget_seconds
            log_event(logger, "info", "run.started", budget_seconds=self.settings.run_budget_seconds)

            try:
                batch = self.plan(symbols, advance_cursor=not dry_run)
                self.state.total = len(batch)
                self.state.symbols = [symbol.ticker for symbol in batch]
                self._publish()

                index = 0
                while index < len(batch) and not dry_run:
                    if self._clock() >= deadline:
                        log_event(
                            logger,
                            "warning",
                            "run.budget_exhausted",
                            elapsed_seconds=round(self._clock() - started, 3),
                            remaining=len(batch) - index,
                        )
                        break

                    window = batch[index : index + max(1, self.controller.concurrency)]
                    index += len(window)

                    records = self._process_window(window, deadline)
                    self.store.bulk_upsert(records)
                    for record in records:
                        self.state.record_success(record.data_quality.missing_fields)

                    log_event(
                        logger,
                        "info",
                        "run.window_flushed",
                        window=len(window),
                        flushed=len(records),
                        completed=self.state.completed,
                        failed=self.state.failed,
                        remaining=self.state.remaining,
                    )
                    self._publish()

                    if self.controller.recently_throttled(THROTTLE_COOLDOWN_WINDOW_SECONDS):
                        self._sleep(THROTTLE_COOLDOWN_SECONDS)

                self.state.status = STATUS_COMPLETED
            except Exception as exc:  # noqa: BLE001
                self.state.status = STATUS_ERROR
                self.state.last_error = str(exc)
                logger.exception("Ingestion run failed")

            self.state.end_time = self._now()
            self._publish()
            log_event(
                logger,
                "info" if self.state.status == STATUS_COMPLETED else "error",
                "run.finished",
                status=self.state.status,
                total=self.state.total,
                completed=self.state.completed,
                failed=self.state.failed,
                remaining=self.state.remaining,
                completeness=self.state.completeness_score,
            )
            return self.state
        finally:
            self._run_lock.release()
