"""Bounded in-memory log of recent fetch errors with per-category counts."""

from __future__ import annotations

import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

MAX_RECENT_ERRORS = 100


class RecentErrors:
    def __init__(self, max_entries: int = MAX_RECENT_ERRORS):
        self._lock = threading.Lock()
        self._entries: deque[dict[str, Any]] = deque(maxlen=max_entries)
        self._by_category: dict[str, int] = {}
        self._by_endpoint: dict[str, int] = {}

    def record(self, category: str, endpoint: str, message: str, **context: Any) -> None:
        entry = {
            "time": datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            "category": category,
            "endpoint": endpoint,
            "message": message,
            **context,
        }
        with self._lock:
            self._entries.append(entry)
            self._by_category[category] = self._by_category.get(category, 0) + 1
            self._by_endpoint[endpoint] = self._by_endpoint.get(endpoint, 0) + 1

    def recent(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._entries)

    def summary(self) -> dict[str, Any]:
        with self._lock:
            return {
                "total": sum(self._by_category.values()),
                "byCategory": dict(self._by_category),
                "byEndpoint": dict(self._by_endpoint),
            }
