"""Unit tests for the fetch executor."""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import INVALID_JSON, FakeClock, FakeFMPClient, FakeResponse, connection_error
from ingest.config import IngestSettings
from ingest.fetch_executor import (
    CATEGORY_API,
    CATEGORY_DEADLINE,
    CATEGORY_INVALID_RESPONSE,
    CATEGORY_NETWORK,
    CATEGORY_RATE_LIMIT,
    FetchExecutor,
)
from ingest.rate_control import RateController

QUOTE = "/stable/quote"


def make_executor(script=None, **kwargs):
    clock = FakeClock()
    controller = RateController(IngestSettings(), clock=clock, sleep=clock.sleep)
    client = FakeFMPClient(script)
    executor = FetchExecutor(client, controller, clock=clock, **kwargs)
    return executor, client, controller, clock


class TestFetchExecutor(unittest.TestCase):
    def test_success_returns_decoded_payload(self):
        """Test success returns decoded payload."""
        executor, client, controller, _ = make_executor()
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertTrue(result.ok)
        self.assertEqual(result.payload[0]["price"], 100.0)
        self.assertEqual(controller.stats()["successes"], 1)
        self.assertEqual(client.calls_for(QUOTE, "AAPL"), 1)

    def test_throttle_is_retried_after_one_backoff(self):
        """Test throttle is retried after one backoff."""
        script = {(QUOTE, "AAPL"): [FakeResponse(429, text="Limit Reach")]}
        executor, client, controller, clock = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertTrue(result.ok)
        self.assertEqual(client.calls_for(QUOTE, "AAPL"), 2)
        self.assertEqual(len(clock.sleeps), 1)
        self.assertAlmostEqual(clock.sleeps[0], 0.13)
        self.assertEqual(controller.stats()["throttles"], 1)

    def test_server_error_is_terminal_without_retry(self):
        """Test server error is terminal without retry."""
        script = {(QUOTE, "AAPL"): [FakeResponse(500, text="boom")]}
        executor, client, controller, _ = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertFalse(result.ok)
        self.assertEqual(result.error.category, CATEGORY_API)
        self.assertEqual(result.error.status_code, 500)
        self.assertEqual(client.calls_for(QUOTE, "AAPL"), 1)
        self.assertEqual(controller.stats()["errors"], 1)

    def test_forbidden_is_not_treated_as_throttle(self):
        """Test forbidden is not treated as throttle."""
        script = {(QUOTE, "AAPL"): [FakeResponse(403, text="Invalid API KEY")]}
        executor, _, controller, clock = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertEqual(result.error.category, CATEGORY_API)
        self.assertEqual(controller.stats()["throttles"], 0)
        self.assertEqual(clock.sleeps, [])

    def test_transport_error_is_network_failure(self):
        """Test transport error is network failure."""
        script = {(QUOTE, "AAPL"): [connection_error()]}
        executor, _, _, _ = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertEqual(result.error.category, CATEGORY_NETWORK)
        self.assertIsNone(result.error.status_code)

    def test_malformed_body_is_invalid_response(self):
        """Test malformed body is invalid response."""
        script = {(QUOTE, "AAPL"): [FakeResponse(200, INVALID_JSON)]}
        executor, _, _, _ = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertEqual(result.error.category, CATEGORY_INVALID_RESPONSE)

    def test_deadline_stops_throttle_retries(self):
        """Test deadline stops throttle retries."""
        script = {(QUOTE, "AAPL"): [FakeResponse(429) for _ in range(100)]}
        executor, client, _, clock = make_executor(script)
        deadline = clock() + 1.0
        result = executor.execute(QUOTE, {"symbol": "AAPL"}, deadline=deadline)
        self.assertEqual(result.error.category, CATEGORY_DEADLINE)
        self.assertGreaterEqual(clock(), deadline)
        self.assertLess(client.calls_for(QUOTE, "AAPL"), 100)

    def test_max_throttle_retries(self):
        """Test the optional throttle retry cap."""
        script = {(QUOTE, "AAPL"): [FakeResponse(429) for _ in range(10)]}
        executor, client, _, _ = make_executor(script, max_throttle_retries=2)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertEqual(result.error.category, CATEGORY_RATE_LIMIT)
        self.assertEqual(client.calls_for(QUOTE, "AAPL"), 3)

    def test_failures_are_recorded_in_recent_errors(self):
        """Test failures are recorded in recent errors."""
        script = {(QUOTE, "AAPL"): [FakeResponse(502, text="bad gateway")]}
        executor, _, _, _ = make_executor(script)
        executor.execute(QUOTE, {"symbol": "AAPL"})
        summary = executor.errors.summary()
        self.assertEqual(summary["byCategory"], {CATEGORY_API: 1})
        self.assertEqual(executor.errors.recent()[0]["symbol"], "AAPL")

    def test_secrets_are_redacted_from_errors(self):
        """Test secrets are redacted from errors."""
        script = {
            (QUOTE, "AAPL"): [
                FakeResponse(400, text="bad request for /stable/quote?symbol=AAPL&apikey=SECRET123")
            ]
        }
        executor, _, _, _ = make_executor(script)
        result = executor.execute(QUOTE, {"symbol": "AAPL"})
        self.assertNotIn("SECRET123", result.error.message)
        self.assertIn("apikey=***", result.error.message)


if __name__ == "__main__":
    unittest.main()
