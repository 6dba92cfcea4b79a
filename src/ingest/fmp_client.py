"""Financial Modeling Prep (FMP) HTTP client.

Issues single GET requests only. Throttle handling and retries live in the
fetch executor so that every request passes through the rate controller.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

import requests

from .config import DEFAULT_BASE_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS
from .events import log_event, redact_secrets

logger = logging.getLogger(__name__)

# Per-symbol sub-resources: name -> (endpoint, extra query params)
SUB_RESOURCES: dict[str, tuple[str, dict[str, Any]]] = {
    "profile": ("/stable/profile", {}),
    "quote": ("/stable/quote", {}),
    "ratios": ("/stable/ratios", {"limit": 1}),
    "financials": ("/stable/income-statement", {"limit": 1}),
    "key_metrics": ("/stable/key-metrics", {"limit": 1}),
    "growth": ("/stable/financial-growth", {"limit": 1}),
}

STOCK_LIST_ENDPOINT = "/stable/stock-list"


def first_record(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict) and data:
        return data
    return None


class FMPClient:
    """Thin FMP client: one request per call, no caching, no retries."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ValueError("FMP API key is required")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.calls_made = 0
        self._lock = threading.Lock()

    def get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> requests.Response:
        """
        Issue one GET request.

        Args:
            endpoint: Path such as "/stable/quote"
            params: Query parameters (the API key is appended)

        Returns:
            The raw response; status handling is left to the caller

        Raises:
            requests.RequestException: transport-level failure
        """
        query: dict[str, Any] = dict(params or {})
        query["apikey"] = self.api_key
        with self._lock:
            self.calls_made += 1

        try:
            return self.session.get(f"{self.base_url}{endpoint}", params=query, timeout=self.timeout)
        except requests.RequestException as exc:
            log_event(
                logger,
                "debug",
                "fmp.transport_error",
                endpoint=endpoint,
                error=redact_secrets(exc),
            )
            raise

    def close(self) -> None:
        self.session.close()
