"""Run orchestrator tests, including the three-symbol end-to-end run."""

import sys
import tempfile
import threading
import unittest
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeClock, FakeFMPClient, FakeResponse, connection_error
from ingest.config import IngestSettings
from ingest.error_log import RecentErrors
from ingest.fetch_executor import FetchExecutor
from ingest.orchestrator import RunOrchestrator
from ingest.rate_control import RateController
from ingest.record_builder import RecordBuildError, RecordBuilder
from ingest.status import STATUS_COMPLETED, STATUS_ERROR
from ingest.store import StockStore, StoreError
from ingest.universe import Symbol

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FailingStore(StockStore):
    def bulk_upsert(self, records):
        raise StoreError("disk I/O error")


class SlowBuilder(RecordBuilder):
    """Advances the fake clock per symbol and can fail chosen tickers."""

    def __init__(self, executor, clock, seconds_per_symbol=0.0, failing=()):
        super().__init__(executor)
        self.clock = clock
        self.seconds_per_symbol = seconds_per_symbol
        self.failing = set(failing)
        self.built: list[str] = []
        self._lock = threading.Lock()

    def build(self, symbol, deadline=None, now=None):
        self.clock.advance(self.seconds_per_symbol)
        with self._lock:
            self.built.append(symbol.ticker)
        if symbol.ticker in self.failing:
            raise RecordBuildError(f"{symbol.ticker}: no sub-resource returned data")
        return super().build(symbol, deadline, now)


class OrchestratorTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.db_path = str(Path(self._tmp.name) / "stocks.db")
        self.clock = FakeClock()
        self.orchestrator_sleeps: list[float] = []

    def make(self, script=None, store_cls=StockStore, builder_kwargs=None, **settings_overrides):
        settings = replace(
            IngestSettings(
                initial_concurrency=3,
                min_concurrency=1,
                max_concurrency=5,
                run_budget_seconds=600,
            ),
            **settings_overrides,
        ).normalized()
        controller = RateController(settings, clock=self.clock, sleep=self.clock.sleep)
        self.client = FakeFMPClient(script)
        errors = RecentErrors()
        executor = FetchExecutor(self.client, controller, errors=errors, clock=self.clock)
        if builder_kwargs is None:
            builder = RecordBuilder(executor)
        else:
            builder = SlowBuilder(executor, self.clock, **builder_kwargs)
        self.store = store_cls(self.db_path)
        self.progress: list[dict] = []
        orchestrator = RunOrchestrator(
            self.store,
            builder,
            controller,
            settings=settings,
            errors=errors,
            on_progress=lambda state: self.progress.append(state.to_status()),
            clock=self.clock,
            sleep=self.orchestrator_sleeps.append,
            now=lambda: NOW,
        )
        return orchestrator, controller, builder


class TestEndToEnd(OrchestratorTestCase):
    def test_three_symbol_run(self):
        """Test a three-symbol run with one throttle and one transport error."""
        script = {
            ("/stable/ratios", "BBB"): [FakeResponse(429, text="Limit Reach")],
            ("/stable/income-statement", "CCC"): [connection_error()],
        }
        orchestrator, controller, _ = self.make(script)
        symbols = [Symbol("AAA", "NYSE"), Symbol("BBB", "NASDAQ"), Symbol("CCC", "NYSE")]

        state = orchestrator.run(symbols)

        self.assertEqual(state.status, STATUS_COMPLETED)
        self.assertEqual(state.completed, 3)
        self.assertEqual(state.failed, 0)
        self.assertEqual(state.remaining, 0)

        record_a = self.store.get("AAA")
        record_b = self.store.get("BBB")
        record_c = self.store.get("CCC")
        self.assertEqual(record_a.data_quality.missing_fields, [])
        self.assertEqual(record_b.data_quality.missing_fields, [])
        self.assertIn("netDebtToEBITDA", record_c.data_quality.missing_fields)

        # one throttle -> exactly one backoff sleep, and no rate-window waits
        self.assertEqual(len(self.clock.sleeps), 1)
        self.assertAlmostEqual(self.clock.sleeps[0], 0.13)
        self.assertEqual(controller.stats()["throttles"], 1)
        self.assertEqual(self.client.calls_for("/stable/ratios", "BBB"), 2)

        status = state.to_status()
        self.assertEqual(status["dataQuality"]["missingFields"], {"netDebtToEBITDA": 1})
        self.assertEqual(status["dataQuality"]["completenessScore"], 97)
        self.assertEqual(status["progress"], {"total": 3, "completed": 3, "failed": 0, "remaining": 0})
        self.assertEqual(self.store.count_all(), 3)

    def test_progress_is_streamed(self):
        """Test progress is streamed."""
        orchestrator, _, _ = self.make()
        orchestrator.run([Symbol("AAA"), Symbol("BBB")])
        self.assertEqual(self.progress[0]["status"], "running")
        self.assertEqual(self.progress[-1]["status"], "completed")
        self.assertIsNotNone(self.progress[-1]["endTime"])


class TestOrchestratorBehaviour(OrchestratorTestCase):
    def test_symbol_failure_is_isolated(self):
        """Test symbol failure is isolated."""
        orchestrator, _, _ = self.make(builder_kwargs={"failing": {"BBB"}})
        state = orchestrator.run([Symbol("AAA"), Symbol("BBB"), Symbol("CCC")])
        self.assertEqual(state.status, STATUS_COMPLETED)
        self.assertEqual(state.completed, 2)
        self.assertEqual(state.failed, 1)
        self.assertIsNone(self.store.get("BBB"))
        self.assertEqual(state.recent_errors[-1]["endpoint"], "BBB")

    def test_budget_stops_between_windows(self):
        """Test budget stops between windows."""
        orchestrator, _, builder = self.make(
            builder_kwargs={"seconds_per_symbol": 10.0},
            initial_concurrency=2,
            run_budget_seconds=15,
        )
        symbols = [Symbol(t) for t in ("A1", "A2", "A3", "A4", "A5")]
        state = orchestrator.run(symbols)
        self.assertEqual(state.status, STATUS_COMPLETED)
        self.assertEqual(state.completed, 2)
        self.assertEqual(state.remaining, 3)
        self.assertEqual(len(builder.built), 2)

    def test_windows_follow_current_concurrency(self):
        """Test windows follow current concurrency."""
        orchestrator, controller, _ = self.make(initial_concurrency=1, success_threshold=6)
        symbols = [Symbol(t) for t in ("A1", "A2", "A3", "A4")]
        state = orchestrator.run(symbols)
        # first symbol's six successes raise concurrency from 1 to 5 for the next window
        self.assertEqual(state.completed, 4)
        self.assertGreater(controller.concurrency, 1)

    def test_flush_failure_is_fatal(self):
        """Test flush failure is fatal."""
        orchestrator, _, _ = self.make(store_cls=FailingStore)
        state = orchestrator.run([Symbol("AAA"), Symbol("BBB")])
        self.assertEqual(state.status, STATUS_ERROR)
        self.assertIn("disk I/O error", state.last_error)
        self.assertEqual(state.completed, 0)
        self.assertEqual(state.total, 2)
        self.assertEqual(self.progress[-1]["lastError"], state.last_error)

    def test_rotation_cursor_persists_between_runs(self):
        """Test rotation cursor persists between runs."""
        orchestrator, _, builder = self.make(
            builder_kwargs={}, rotation_batch_size=2, initial_concurrency=5
        )
        symbols = [Symbol(t) for t in ("A1", "A2", "A3")]
        orchestrator.run(symbols)
        self.assertEqual(self.store.get_rotation_cursor(), 2)
        self.assertEqual(self.store.count_all(), 2)

    def test_dry_run_fetches_nothing(self):
        """Test dry run fetches nothing."""
        orchestrator, _, _ = self.make(rotation_batch_size=2)
        state = orchestrator.run([Symbol(t) for t in ("A1", "A2", "A3")], dry_run=True)
        self.assertEqual(state.status, STATUS_COMPLETED)
        self.assertEqual(state.symbols, ["A1", "A2"])
        self.assertEqual(state.remaining, 2)
        self.assertEqual(self.client.calls, [])
        self.assertEqual(self.store.get_rotation_cursor(), 0)

    def test_failing_status_writer_does_not_stop_the_run(self):
        """Test that a status callback error is logged and the run still completes."""
        orchestrator, _, _ = self.make()

        def broken_writer(state):
            raise OSError("disk full writing status")

        orchestrator.on_progress = broken_writer
        with self.assertLogs("ingest.orchestrator", level="WARNING") as logs:
            state = orchestrator.run([Symbol("AAA"), Symbol("BBB")])

        self.assertEqual(state.status, STATUS_COMPLETED)
        self.assertEqual(state.completed, 2)
        self.assertEqual(self.store.count_all(), 2)
        self.assertTrue(any("run.status_publish_failed" in line for line in logs.output))

    def test_records_use_the_run_clock(self):
        """Test that lastUpdated comes from the orchestrator's injected now."""
        orchestrator, _, _ = self.make()
        orchestrator.run([Symbol("AAA")])
        self.assertEqual(self.store.get("AAA").last_updated, NOW.isoformat())

    def test_recent_throttle_adds_short_pause(self):
        """Test recent throttle adds short pause."""
        script = {("/stable/quote", "AAA"): [FakeResponse(429)]}
        orchestrator, _, _ = self.make(script)
        orchestrator.run([Symbol("AAA")])
        self.assertEqual(self.orchestrator_sleeps, [0.1])


if __name__ == "__main__":
    unittest.main()
