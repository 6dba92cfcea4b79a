"""Settings, .env parsing, universe filters and status file tests."""

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeClock, FakeFMPClient, FakeResponse
from ingest.config import MIN_BACKOFF_SECONDS, IngestSettings, load_dotenv, load_settings
from ingest.fetch_executor import FetchExecutor
from ingest.fmp_client import STOCK_LIST_ENDPOINT
from ingest.rate_control import RateController
from ingest.status import RunState, read_status, write_status
from ingest.universe import (
    Symbol,
    fetch_universe,
    filter_symbols,
    load_universe_file,
    normalize_exchange,
)


class TempDirTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.tmp = Path(self._tmp.name)


class TestSettings(TempDirTestCase):
    def test_defaults(self):
        """Test built-in defaults when no file or environment is given."""
        settings = load_settings(env={}, config_path=self.tmp / "missing.json")
        self.assertEqual(settings.run_budget_seconds, 1500)
        self.assertEqual(settings.initial_concurrency, 30)
        self.assertEqual(settings.rotation_batch_size, 200)
        self.assertEqual(settings.endpoint_classes["default"].max_requests_per_window, 750)

    def test_environment_overrides_file(self):
        """Test environment overrides file."""
        config = self.tmp / "ingest.json"
        config.write_text(
            json.dumps({"rotation_batch_size": 120, "max_concurrency": 40}), encoding="utf-8"
        )
        settings = load_settings(
            env={"INGEST_ROTATION_BATCH_SIZE": "80", "FMP_API_KEY": "k"},
            config_path=config,
        )
        self.assertEqual(settings.rotation_batch_size, 80)
        self.assertEqual(settings.max_concurrency, 40)
        self.assertEqual(settings.fmp_api_key, "k")

    def test_malformed_values_keep_defaults(self):
        """Test malformed values keep defaults."""
        settings = load_settings(
            env={"INGEST_MAX_CONCURRENCY": "lots", "INGEST_BACKOFF_FACTOR": "-2"},
            config_path=self.tmp / "missing.json",
        )
        self.assertEqual(settings.max_concurrency, 60)
        self.assertAlmostEqual(settings.backoff_factor, 1.3)

    def test_unreadable_config_is_ignored(self):
        """Test unreadable config is ignored."""
        config = self.tmp / "ingest.json"
        config.write_text("{not json", encoding="utf-8")
        self.assertEqual(load_settings(env={}, config_path=config).max_concurrency, 60)

    def test_endpoint_class_overrides(self):
        """Test endpoint class overrides."""
        config = self.tmp / "ingest.json"
        config.write_text(
            json.dumps(
                {"endpoint_classes": {"default": {"max_requests_per_window": 300}}}
            ),
            encoding="utf-8",
        )
        settings = load_settings(env={}, config_path=config)
        self.assertEqual(settings.endpoint_classes["default"].max_requests_per_window, 300)
        self.assertEqual(settings.endpoint_classes["bulk"].max_requests_per_window, 6)

    def test_normalization_clamps_bounds(self):
        """Test normalization clamps bounds."""
        settings = IngestSettings(
            initial_concurrency=100,
            min_concurrency=20,
            max_concurrency=5,
            initial_backoff_seconds=3.0,
            max_backoff_seconds=1.0,
        ).normalized()
        self.assertEqual(settings.max_concurrency, 20)
        self.assertEqual(settings.initial_concurrency, 20)
        self.assertEqual(settings.max_backoff_seconds, 3.0)

    def test_initial_backoff_is_never_zero(self):
        """Test that zero or negative initial backoff is raised to the floor."""
        settings = load_settings(
            env={"INGEST_INITIAL_BACKOFF_SECONDS": "0"},
            config_path=self.tmp / "missing.json",
        )
        self.assertAlmostEqual(settings.initial_backoff_seconds, MIN_BACKOFF_SECONDS)
        self.assertGreater(
            IngestSettings(initial_backoff_seconds=-1.0).normalized().initial_backoff_seconds, 0
        )


class TestDotenv(TempDirTestCase):
    def test_parses_and_does_not_override(self):
        """Test parses and does not override."""
        env_file = self.tmp / ".env"
        env_file.write_text(
            "# comment\n"
            "export FMP_API_KEY='abc#123'  # inline comment\n"
            "INGEST_DB_PATH=\"data/x.db\"\n"
            "EXISTING=from-file\n",
            encoding="utf-8",
        )
        with mock.patch.dict(os.environ, {"EXISTING": "kept"}, clear=True):
            parsed = load_dotenv(env_file)
            self.assertEqual(parsed["FMP_API_KEY"], "abc#123")
            self.assertEqual(os.environ["INGEST_DB_PATH"], "data/x.db")
            self.assertEqual(os.environ["EXISTING"], "kept")

    def test_missing_file(self):
        """Test that a missing .env file is ignored."""
        self.assertEqual(load_dotenv(self.tmp / "nope.env"), {})


class TestUniverse(TempDirTestCase):
    def test_normalize_exchange(self):
        """Test normalize exchange."""
        self.assertEqual(normalize_exchange("NASDAQ Global Select"), "NASDAQ")
        self.assertEqual(normalize_exchange("XNYS"), "NYSE")
        self.assertEqual(normalize_exchange("AMEX"), "AMEX")

    def test_filters(self):
        """Test exclusion filters and de-duplication by ticker."""
        rows = [
            {"symbol": "AAPL", "name": "Apple Inc.", "exchangeShortName": "NASDAQ", "type": "stock"},
            {"symbol": "SPY", "name": "SPDR S&P 500 ETF Trust", "exchangeShortName": "NYSE", "type": "etf"},
            {"symbol": "QQQX", "name": "Some Growth ETF", "exchangeShortName": "NASDAQ", "type": "stock"},
            {"symbol": "BRK-B", "name": "Berkshire", "exchangeShortName": "NYSE", "type": "stock"},
            {"symbol": "BAC.PL", "name": "Bank pref", "exchangeShortName": "NYSE", "type": "stock"},
            {"symbol": "XYZ", "name": "OTC Co", "exchangeShortName": "OTC", "type": "stock"},
            {"symbol": "JPM", "name": "JPMorgan", "exchange": "New York Stock Exchange", "type": "stock"},
            {"symbol": "AAPL", "name": "Apple duplicate", "exchangeShortName": "NASDAQ", "type": "stock"},
            {"name": "no ticker"},
        ]
        symbols = filter_symbols(rows)
        self.assertEqual(
            symbols,
            [Symbol("AAPL", "NASDAQ", "Apple Inc."), Symbol("JPM", "NYSE", "JPMorgan")],
        )

    def test_load_universe_file_formats(self):
        """Test load universe file formats."""
        plain = self.tmp / "plain.json"
        plain.write_text(json.dumps(["aapl", " msft ", "BRK.B"]), encoding="utf-8")
        self.assertEqual([s.ticker for s in load_universe_file(plain)], ["AAPL", "MSFT"])

        wrapped = self.tmp / "wrapped.json"
        wrapped.write_text(json.dumps({"symbols": [{"symbol": "NVDA", "exchange": "NASDAQ"}]}), encoding="utf-8")
        self.assertEqual(load_universe_file(wrapped), [Symbol("NVDA", "NASDAQ", "")])

        broken = self.tmp / "broken.json"
        broken.write_text(json.dumps({"tickers": "AAPL"}), encoding="utf-8")
        with self.assertRaises(ValueError):
            load_universe_file(broken)

    def _executor(self, script):
        clock = FakeClock()
        controller = RateController(IngestSettings(), clock=clock, sleep=clock.sleep)
        return FetchExecutor(FakeFMPClient(script), controller, clock=clock)

    def test_fetch_universe_filters_stock_list(self):
        """Test fetch universe filters stock list."""
        rows = [
            {"symbol": "MSFT", "name": "Microsoft", "exchangeShortName": "NASDAQ", "type": "stock"},
            {"symbol": "VOO", "name": "Vanguard S&P 500 ETF", "exchangeShortName": "AMEX", "type": "etf"},
        ]
        executor = self._executor({(STOCK_LIST_ENDPOINT, None): [FakeResponse(200, rows)]})
        self.assertEqual(fetch_universe(executor), [Symbol("MSFT", "NASDAQ", "Microsoft")])

    def test_fetch_universe_failure_raises(self):
        """Test fetch universe failure raises."""
        executor = self._executor(
            {(STOCK_LIST_ENDPOINT, None): [FakeResponse(500, text="server error")]}
        )
        with self.assertRaises(RuntimeError):
            fetch_universe(executor)


class TestStatusFile(TempDirTestCase):
    def test_round_trip(self):
        """Test that the status file reads back what was written."""
        state = RunState(status="running", total=10, completed=4, failed=1)
        state.record_success(["peRatio"])
        path = self.tmp / "status" / "import_status.json"
        write_status(path, state.to_status())
        loaded = read_status(path)
        self.assertEqual(loaded["progress"], {"total": 10, "completed": 5, "failed": 1, "remaining": 4})
        self.assertEqual(loaded["dataQuality"]["missingFields"], {"peRatio": 1})
        self.assertFalse((self.tmp / "status" / "import_status.json.tmp").exists())

    def test_missing_or_corrupt(self):
        """Test that missing or corrupt status files read as None."""
        self.assertIsNone(read_status(self.tmp / "none.json"))
        corrupt = self.tmp / "corrupt.json"
        corrupt.write_text("{", encoding="utf-8")
        self.assertIsNone(read_status(corrupt))


if __name__ == "__main__":
    unittest.main()
