"""Run status surface: RunState value and its JSON status file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from scoring.quality_gate import aggregate_completeness

STATUS_IDLE = "idle"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"


@dataclass
class RunState:
    status: str = STATUS_IDLE
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    total: int = 0
    completed: int = 0
    failed: int = 0
    missing_fields: dict[str, int] = field(default_factory=dict)
    missing_counts: list[int] = field(default_factory=list)
    last_error: Optional[str] = None
    symbols: list[str] = field(default_factory=list)
    rate_stats: dict[str, Any] = field(default_factory=dict)
    recent_errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def remaining(self) -> int:
        return max(0, self.total - self.completed - self.failed)

    @property
    def completeness_score(self) -> int:
        return aggregate_completeness(self.missing_counts)

    def record_success(self, missing_fields: list[str]) -> None:
        self.completed += 1
        self.missing_counts.append(len(missing_fields))
        for name in missing_fields:
            self.missing_fields[name] = self.missing_fields.get(name, 0) + 1

    def to_status(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "progress": {
                "total": self.total,
                "completed": self.completed,
                "failed": self.failed,
                "remaining": self.remaining,
            },
            "dataQuality": {
                "missingFields": dict(self.missing_fields),
                "completenessScore": self.completeness_score,
            },
            "lastError": self.last_error,
            "rateStats": dict(self.rate_stats),
            "recentErrors": list(self.recent_errors),
        }


def write_status(path: str | Path, status: dict[str, Any]) -> None:
    """Write the status file atomically (temp file, then replace)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(f"{target.name}.tmp")
    tmp.write_text(json.dumps(status, indent=2, sort_keys=True, default=str), encoding="utf-8")
    os.replace(tmp, target)


def read_status(path: str | Path) -> Optional[dict[str, Any]]:
    target = Path(path)
    if not target.exists():
        return None
    try:
        payload = json.loads(target.read_text(encoding="utf-8"))
    except json.JSONDecodeError:
        return None
    return payload if isinstance(payload, dict) else None
