"""Structured JSON event logging shared by the ingestion modules."""

from __future__ import annotations

import json
import logging
import re
from typing import Any

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def redact_secrets(value: Any) -> str:
    text = "" if value is None else str(value)
    return re.sub(r"(apikey=)[^&\s]+", r"\1***", text)


def log_event(logger: logging.Logger, level: str, event: str, **data: Any) -> None:
    payload = {"event": event, **data}
    logger.log(_LEVELS.get(level, logging.INFO), json.dumps(payload, sort_keys=True, default=str))
