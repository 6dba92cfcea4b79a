"""Single logical upstream request: rate-limited, classified, retried on 429."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from .error_log import RecentErrors
from .events import log_event, redact_secrets
from .rate_control import (
    OUTCOME_ERROR,
    OUTCOME_SUCCESS,
    OUTCOME_THROTTLED,
    RateController,
)

logger = logging.getLogger(__name__)

CATEGORY_RATE_LIMIT = "rate_limit"
CATEGORY_NETWORK = "network"
CATEGORY_API = "api"
CATEGORY_INVALID_RESPONSE = "invalid_response"
CATEGORY_DEADLINE = "deadline"

THROTTLE_STATUS = 429


@dataclass(frozen=True)
class FetchError:
    endpoint: str
    category: str
    message: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class FetchResult:
    payload: Any = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FetchExecutor:
    """
    Runs one request through the rate controller.

    Throttled responses are retried after the controller's backoff until they
    succeed. The optional deadline (a value of ``clock``) is the explicit
    escape: once it has passed, a still-throttled request returns a
    ``deadline`` failure instead of retrying again.
    """

    def __init__(
        self,
        client: Any,
        controller: RateController,
        errors: RecentErrors | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_throttle_retries: int | None = None,
    ):
        self.client = client
        self.controller = controller
        self.errors = errors if errors is not None else RecentErrors()
        self._clock = clock
        self.max_throttle_retries = max_throttle_retries

    def _fail(
        self,
        endpoint: str,
        category: str,
        message: str,
        status_code: int | None = None,
        **context: Any,
    ) -> FetchResult:
        message = redact_secrets(message)
        self.errors.record(category, endpoint, message, status_code=status_code, **context)
        log_event(
            logger,
            "warning",
            "fetch.failed",
            endpoint=endpoint,
            category=category,
            status_code=status_code,
            error=message,
            **context,
        )
        return FetchResult(
            error=FetchError(
                endpoint=endpoint, category=category, message=message, status_code=status_code
            )
        )

    def execute(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        deadline: float | None = None,
    ) -> FetchResult:
        """
        Fetch and decode one endpoint.

        Args:
            endpoint: Upstream path, classified into an endpoint class
            params: Query parameters
            deadline: Clock value after which throttle retries stop

        Returns:
            FetchResult with the decoded JSON payload or a FetchError
        """
        endpoint_class = self.controller.classify(endpoint)
        symbol = (params or {}).get("symbol")
        throttle_retries = 0

        while True:
            self.controller.acquire(endpoint_class)
            try:
                response = self.client.get(endpoint, params)
            except requests.RequestException as exc:
                self.controller.report(endpoint_class, OUTCOME_ERROR)
                return self._fail(endpoint, CATEGORY_NETWORK, str(exc), symbol=symbol)

            status = response.status_code
            if status == THROTTLE_STATUS:
                self.controller.report(endpoint_class, OUTCOME_THROTTLED)
                throttle_retries += 1
                if deadline is not None and self._clock() >= deadline:
                    return self._fail(
                        endpoint,
                        CATEGORY_DEADLINE,
                        "still throttled when the run deadline passed",
                        status_code=status,
                        symbol=symbol,
                        attempts=throttle_retries,
                    )
                if (
                    self.max_throttle_retries is not None
                    and throttle_retries > self.max_throttle_retries
                ):
                    return self._fail(
                        endpoint,
                        CATEGORY_RATE_LIMIT,
                        "throttle retry limit reached",
                        status_code=status,
                        symbol=symbol,
                        attempts=throttle_retries,
                    )
                log_event(
                    logger,
                    "debug",
                    "fetch.throttled_retry",
                    endpoint=endpoint,
                    endpoint_class=endpoint_class.name,
                    symbol=symbol,
                    attempt=throttle_retries,
                )
                continue

            if not 200 <= status < 300:
                self.controller.report(endpoint_class, OUTCOME_ERROR)
                return self._fail(
                    endpoint,
                    CATEGORY_API,
                    (response.text or "")[:250],
                    status_code=status,
                    symbol=symbol,
                )

            try:
                payload = response.json()
            except ValueError:
                self.controller.report(endpoint_class, OUTCOME_ERROR)
                return self._fail(
                    endpoint,
                    CATEGORY_INVALID_RESPONSE,
                    "response body is not valid JSON",
                    status_code=status,
                    symbol=symbol,
                )

            self.controller.report(endpoint_class, OUTCOME_SUCCESS)
            return FetchResult(payload=payload)
