"""Ingestion settings from defaults, an optional JSON file and the environment."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://financialmodelingprep.com"
DEFAULT_DB_PATH = "data/stocks.db"
DEFAULT_STATUS_PATH = "data/import_status.json"
DEFAULT_CONFIG_PATH = "config/ingest.json"

DEFAULT_RUN_BUDGET_SECONDS = 25 * 60
DEFAULT_INITIAL_CONCURRENCY = 30
DEFAULT_MIN_CONCURRENCY = 10
DEFAULT_MAX_CONCURRENCY = 60
DEFAULT_CONCURRENCY_STEP = 5
DEFAULT_INITIAL_BACKOFF_SECONDS = 0.1
DEFAULT_MAX_BACKOFF_SECONDS = 2.0
DEFAULT_BACKOFF_FACTOR = 1.3
MIN_BACKOFF_SECONDS = 0.01
DEFAULT_SUCCESS_THRESHOLD = 20
DEFAULT_RATE_LIMIT_THRESHOLD = 3
DEFAULT_ROTATION_BATCH_SIZE = 200
DEFAULT_REQUEST_TIMEOUT_SECONDS = 20.0

DEFAULT_CLASS_NAME = "default"
BULK_CLASS_NAME = "bulk"
BULK_MARKER = "bulk"


@dataclass(frozen=True)
class EndpointClass:
    """Rate-limit profile shared by a group of upstream endpoints."""

    name: str
    max_requests_per_window: int
    window_seconds: float = 60.0
    min_spacing_seconds: float = 0.0


DEFAULT_ENDPOINT_CLASSES: dict[str, EndpointClass] = {
    DEFAULT_CLASS_NAME: EndpointClass(DEFAULT_CLASS_NAME, 750, 60.0, 0.0),
    BULK_CLASS_NAME: EndpointClass(BULK_CLASS_NAME, 6, 60.0, 10.0),
    "/stable/profile-bulk": EndpointClass("/stable/profile-bulk", 1, 60.0, 60.0),
    "/stable/etf-holder-bulk": EndpointClass("/stable/etf-holder-bulk", 1, 60.0, 60.0),
}


@dataclass(frozen=True)
class IngestSettings:
    fmp_api_key: str = ""
    fmp_base_url: str = DEFAULT_BASE_URL
    db_path: str = DEFAULT_DB_PATH
    status_path: str = DEFAULT_STATUS_PATH
    run_budget_seconds: float = DEFAULT_RUN_BUDGET_SECONDS
    initial_concurrency: int = DEFAULT_INITIAL_CONCURRENCY
    min_concurrency: int = DEFAULT_MIN_CONCURRENCY
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    concurrency_step: int = DEFAULT_CONCURRENCY_STEP
    initial_backoff_seconds: float = DEFAULT_INITIAL_BACKOFF_SECONDS
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    success_threshold: int = DEFAULT_SUCCESS_THRESHOLD
    rate_limit_threshold: int = DEFAULT_RATE_LIMIT_THRESHOLD
    rotation_batch_size: int = DEFAULT_ROTATION_BATCH_SIZE
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS
    endpoint_classes: dict[str, EndpointClass] = field(
        default_factory=lambda: dict(DEFAULT_ENDPOINT_CLASSES)
    )

    def normalized(self) -> "IngestSettings":
        """Clamp bounds so min <= initial <= max holds for concurrency and backoff."""
        min_c = max(1, self.min_concurrency)
        max_c = max(min_c, self.max_concurrency)
        initial_c = min(max(self.initial_concurrency, min_c), max_c)
        initial_b = max(MIN_BACKOFF_SECONDS, self.initial_backoff_seconds)
        max_b = max(initial_b, self.max_backoff_seconds)
        return replace(
            self,
            min_concurrency=min_c,
            max_concurrency=max_c,
            initial_concurrency=initial_c,
            concurrency_step=max(1, self.concurrency_step),
            initial_backoff_seconds=initial_b,
            max_backoff_seconds=max_b,
            backoff_factor=max(1.0, self.backoff_factor),
            success_threshold=max(1, self.success_threshold),
            rate_limit_threshold=max(1, self.rate_limit_threshold),
            rotation_batch_size=max(1, self.rotation_batch_size),
        )


def _strip_inline_comment(value: str) -> str:
    in_single = False
    in_double = False
    result: list[str] = []

    for char in value:
        if char == "'" and not in_double:
            in_single = not in_single
        elif char == '"' and not in_single:
            in_double = not in_double
        elif char == "#" and not in_single and not in_double:
            break
        result.append(char)

    return "".join(result).strip()


def _parse_env_file(env_path: str | Path) -> dict[str, str]:
    p = Path(env_path)
    if not p.exists():
        return {}

    parsed: dict[str, str] = {}
    with p.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, _, value = line.partition("=")
            key = key.strip()
            if key.startswith("export "):
                key = key[len("export ") :].strip()

            value = _strip_inline_comment(value.strip())
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            if key:
                parsed[key] = value

    return parsed


def load_dotenv(env_path: str | Path = ".env") -> dict[str, str]:
    """Load .env file into os.environ (simple parser, no dependency)."""
    parsed = _parse_env_file(env_path)
    for key, value in parsed.items():
        if key not in os.environ:
            os.environ[key] = value
    return parsed


def _coerce_float(value: Any, default: float) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    return num if num >= 0 else default


def _coerce_int(value: Any, default: int) -> int:
    try:
        num = int(value)
    except (TypeError, ValueError):
        return default
    return num if num > 0 else default


def _load_json_config(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable ingest config %s: %s", path, exc)
        return {}
    return payload if isinstance(payload, dict) else {}


def _endpoint_classes_from(raw: Any) -> dict[str, EndpointClass]:
    classes = dict(DEFAULT_ENDPOINT_CLASSES)
    if not isinstance(raw, dict):
        return classes
    for pattern, profile in raw.items():
        if not isinstance(profile, dict):
            continue
        base = classes.get(pattern, classes[DEFAULT_CLASS_NAME])
        classes[pattern] = EndpointClass(
            name=pattern,
            max_requests_per_window=_coerce_int(
                profile.get("max_requests_per_window"), base.max_requests_per_window
            ),
            window_seconds=_coerce_float(profile.get("window_seconds"), base.window_seconds),
            min_spacing_seconds=_coerce_float(
                profile.get("min_spacing_seconds"), base.min_spacing_seconds
            ),
        )
    return classes


# setting name -> (environment variable, coercion)
_ENV_FIELDS: dict[str, tuple[str, str]] = {
    "fmp_api_key": ("FMP_API_KEY", "str"),
    "fmp_base_url": ("FMP_BASE_URL", "str"),
    "db_path": ("INGEST_DB_PATH", "str"),
    "status_path": ("INGEST_STATUS_PATH", "str"),
    "run_budget_seconds": ("INGEST_RUN_BUDGET_SECONDS", "float"),
    "initial_concurrency": ("INGEST_INITIAL_CONCURRENCY", "int"),
    "min_concurrency": ("INGEST_MIN_CONCURRENCY", "int"),
    "max_concurrency": ("INGEST_MAX_CONCURRENCY", "int"),
    "concurrency_step": ("INGEST_CONCURRENCY_STEP", "int"),
    "initial_backoff_seconds": ("INGEST_INITIAL_BACKOFF_SECONDS", "float"),
    "max_backoff_seconds": ("INGEST_MAX_BACKOFF_SECONDS", "float"),
    "backoff_factor": ("INGEST_BACKOFF_FACTOR", "float"),
    "success_threshold": ("INGEST_SUCCESS_THRESHOLD", "int"),
    "rate_limit_threshold": ("INGEST_RATE_LIMIT_THRESHOLD", "int"),
    "rotation_batch_size": ("INGEST_ROTATION_BATCH_SIZE", "int"),
    "request_timeout_seconds": ("INGEST_REQUEST_TIMEOUT_SECONDS", "float"),
}


def _coerce(kind: str, value: Any, default: Any) -> Any:
    if kind == "int":
        return _coerce_int(value, default)
    if kind == "float":
        return _coerce_float(value, default)
    text = "" if value is None else str(value).strip()
    return text or default


def load_settings(
    env: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> IngestSettings:
    """
    Resolve settings: defaults, then JSON config file, then environment.

    Args:
        env: Environment mapping (defaults to os.environ)
        config_path: JSON config file; config/ingest.json when omitted

    Returns:
        Normalized IngestSettings
    """
    env = os.environ if env is None else env
    path = Path(config_path) if config_path else Path(DEFAULT_CONFIG_PATH)
    file_values = _load_json_config(path)

    defaults = IngestSettings()
    values: dict[str, Any] = {}
    for name, (env_key, kind) in _ENV_FIELDS.items():
        value = getattr(defaults, name)
        if name in file_values:
            value = _coerce(kind, file_values[name], value)
        if env_key in env:
            value = _coerce(kind, env[env_key], value)
        values[name] = value

    values["endpoint_classes"] = _endpoint_classes_from(file_values.get("endpoint_classes"))
    return IngestSettings(**values).normalized()
