"""Per-endpoint rate limiting with adaptive concurrency and throttle backoff.

All shared rate state (endpoint windows, concurrency, backoff, counters) is
owned by RateController and mutated only under its lock. Sleeps happen outside
the lock so waiting callers never block state reads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from .config import (
    BULK_CLASS_NAME,
    BULK_MARKER,
    DEFAULT_CLASS_NAME,
    EndpointClass,
    IngestSettings,
)
from .events import log_event

logger = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_THROTTLED = "throttled"
OUTCOME_ERROR = "other_error"

STATS_WINDOW_SECONDS = 60.0


@dataclass
class EndpointState:
    window_start: float
    requests_in_window: int = 0
    last_request: Optional[float] = None


@dataclass
class GlobalThrottleState:
    concurrency: int
    backoff: float
    consecutive_successes: int = 0
    consecutive_rate_limits: int = 0


class RateController:
    def __init__(
        self,
        settings: IngestSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep = sleep
        self._endpoint_states: dict[str, EndpointState] = {}
        self._configure((settings or IngestSettings()).normalized())

    def _configure(self, settings: IngestSettings) -> None:
        self.settings = settings
        self._classes = dict(settings.endpoint_classes)
        self._state = GlobalThrottleState(
            concurrency=settings.initial_concurrency,
            backoff=settings.initial_backoff_seconds,
        )
        self._requests_total = 0
        self._successes = 0
        self._throttles = 0
        self._errors = 0
        self._requests_by_class: dict[str, int] = {}
        self._recent_requests: deque[float] = deque()
        self._last_throttle_at: Optional[float] = None

    def reload(self, settings: IngestSettings) -> None:
        """Apply new settings; resets concurrency, backoff and counters."""
        with self._lock:
            self._configure(settings.normalized())
            self._endpoint_states.clear()
        log_event(
            logger,
            "info",
            "rate.reloaded",
            concurrency=self._state.concurrency,
            backoff_seconds=self._state.backoff,
        )

    @property
    def concurrency(self) -> int:
        with self._lock:
            return self._state.concurrency

    @property
    def backoff(self) -> float:
        with self._lock:
            return self._state.backoff

    def classify(self, endpoint: str) -> EndpointClass:
        """Exact pattern match, then the bulk marker, then the default class."""
        path = endpoint.split("?", 1)[0]
        special = {DEFAULT_CLASS_NAME, BULK_CLASS_NAME}
        if path in self._classes and path not in special:
            return self._classes[path]
        if BULK_MARKER in path.lower() and BULK_CLASS_NAME in self._classes:
            return self._classes[BULK_CLASS_NAME]
        return self._classes[DEFAULT_CLASS_NAME]

    def _delay_for(self, endpoint_class: EndpointClass, state: EndpointState, now: float) -> float:
        delays = [0.0]
        if state.requests_in_window >= endpoint_class.max_requests_per_window:
            delays.append(endpoint_class.window_seconds - (now - state.window_start))
        if state.last_request is not None and endpoint_class.min_spacing_seconds > 0:
            delays.append(endpoint_class.min_spacing_seconds - (now - state.last_request))
        return max(delays)

    def acquire(self, endpoint_class: EndpointClass) -> float:
        """
        Block until a request against endpoint_class may be issued.

        The window count and last-request time are reserved at grant time, so
        concurrent callers cannot both pass on the same slot.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                now = self._clock()
                state = self._endpoint_states.get(endpoint_class.name)
                if state is None:
                    state = EndpointState(window_start=now)
                    self._endpoint_states[endpoint_class.name] = state
                if now - state.window_start >= endpoint_class.window_seconds:
                    state.window_start = now
                    state.requests_in_window = 0

                delay = self._delay_for(endpoint_class, state, now)
                if delay <= 0:
                    state.requests_in_window += 1
                    state.last_request = now
                    self._requests_total += 1
                    self._requests_by_class[endpoint_class.name] = (
                        self._requests_by_class.get(endpoint_class.name, 0) + 1
                    )
                    self._recent_requests.append(now)
                    return waited

            if waited == 0.0:
                log_event(
                    logger,
                    "debug",
                    "rate.waiting",
                    endpoint_class=endpoint_class.name,
                    delay_seconds=round(delay, 3),
                )
            self._sleep(delay)
            waited += delay

    def report(self, endpoint_class: EndpointClass, outcome: str) -> float:
        """
        Record the outcome of a granted request.

        On a throttle the caller is held for the (grown) backoff before it
        returns, so the caller may retry immediately afterwards.

        Returns:
            Seconds slept for backoff (0.0 unless throttled)
        """
        backoff_sleep = 0.0
        with self._lock:
            s = self._state
            if outcome == OUTCOME_SUCCESS:
                self._successes += 1
                s.consecutive_successes += 1
                s.consecutive_rate_limits = 0
                if s.consecutive_successes >= self.settings.success_threshold:
                    previous = s.concurrency
                    s.concurrency = min(
                        self.settings.max_concurrency,
                        s.concurrency + self.settings.concurrency_step,
                    )
                    s.consecutive_successes = 0
                    if s.concurrency != previous:
                        log_event(
                            logger,
                            "info",
                            "rate.concurrency_increased",
                            previous=previous,
                            concurrency=s.concurrency,
                        )
            elif outcome == OUTCOME_THROTTLED:
                self._throttles += 1
                self._last_throttle_at = self._clock()
                s.consecutive_rate_limits += 1
                s.consecutive_successes = 0
                if s.consecutive_rate_limits >= self.settings.rate_limit_threshold:
                    previous = s.concurrency
                    s.concurrency = max(
                        self.settings.min_concurrency,
                        s.concurrency - self.settings.concurrency_step,
                    )
                    s.consecutive_rate_limits = 0
                    if s.concurrency != previous:
                        log_event(
                            logger,
                            "warning",
                            "rate.concurrency_decreased",
                            previous=previous,
                            concurrency=s.concurrency,
                        )
                s.backoff = min(
                    self.settings.max_backoff_seconds,
                    s.backoff * self.settings.backoff_factor,
                )
                backoff_sleep = s.backoff
            else:
                self._errors += 1

        if backoff_sleep > 0:
            log_event(
                logger,
                "debug",
                "rate.backoff",
                endpoint_class=endpoint_class.name,
                backoff_seconds=round(backoff_sleep, 3),
            )
            self._sleep(backoff_sleep)
        return backoff_sleep

    def recently_throttled(self, within_seconds: float) -> bool:
        with self._lock:
            if self._last_throttle_at is None:
                return False
            return self._clock() - self._last_throttle_at <= within_seconds

    def stats(self) -> dict:
        with self._lock:
            now = self._clock()
            while self._recent_requests and now - self._recent_requests[0] > STATS_WINDOW_SECONDS:
                self._recent_requests.popleft()
            return {
                "concurrency": self._state.concurrency,
                "backoffSeconds": round(self._state.backoff, 4),
                "requestsTotal": self._requests_total,
                "successes": self._successes,
                "throttles": self._throttles,
                "errors": self._errors,
                "requestsByClass": dict(self._requests_by_class),
                "requestsLastMinute": len(self._recent_requests),
                "secondsSinceLastThrottle": (
                    None
                    if self._last_throttle_at is None
                    else round(now - self._last_throttle_at, 3)
                ),
            }
