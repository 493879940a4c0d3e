from __future__ import annotations

import logging
from typing import Any

from service import logging_utils as _svc_logging

# Top-level keys scrubbed before a record can reach the stdlib fallback
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "bearer",
}
_REDACTED = "***REDACTED***"


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """Copy of `record` with secret-like top-level values replaced; nesting is left to the JSONL writer."""
    out: dict[str, Any] = {}
    for k, v in record.items():
        lk = str(k).lower()
        secret = lk in _REDACT_KEYS or lk.endswith(("_key", "_secret", "_token"))
        out[k] = _REDACTED if secret else v
    return out


def _dispatch(kind: str, level: int, record: dict[str, Any]) -> None:
    payload = _redact_record(record)
    fallback = logging.getLogger(f"firecrawl_crawl.{kind}")
    writer = _svc_logging.write_activity_log if kind == "activity" else _svc_logging.write_error_log
    try:
        writer(payload)
        return
    except Exception:
        fallback.debug("%s log write failed", kind, exc_info=True)
    fallback.log(level, payload)


def activity(record: dict[str, Any]) -> None:
    """Structured activity record (JSONL); stdlib INFO if the file write fails."""
    _dispatch("activity", logging.INFO, record)


def error(record: dict[str, Any]) -> None:
    """Structured error record (JSONL); stdlib ERROR if the file write fails."""
    _dispatch("error", logging.ERROR, record)
