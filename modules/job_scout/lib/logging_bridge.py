from __future__ import annotations

import copy
import logging
from typing import Any

# Structured sink lives in the service package; when the module is used on its
# own (scripts, tests without service on the path) records go to stdlib logging.
try:
    from service import logging_utils as _logging_backend  # type: ignore
except ImportError:
    _logging_backend = None

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "bot_token",
    "telegram_token",
    "chat_id",
    "telegram_chat_id",
    "apikey",
    "api_key",
    "secret",
    "cookie",
    "cookies",
    "authorization",
    "auth",
    "bearer",
}


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact secret-like fields at top level.
    The service sink redacts nested structures as well.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.startswith("telegram_") or lk.endswith("_secret"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record ({"component": ..., "op": ..., ...}).
    Falls back to stdlib logging as structured info.
    """
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_activity_log(payload)
            return
        except Exception:
            logging.getLogger("job_scout.activity").debug("activity sink failed", exc_info=True)
    logging.getLogger("job_scout.activity").info(payload)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record. Falls back to stdlib logging as structured error.
    """
    payload = _redact_record(record)
    if _logging_backend is not None:
        try:
            _logging_backend.write_error_log(payload)
            return
        except Exception:
            logging.getLogger("job_scout.error").debug("error sink failed", exc_info=True)
    logging.getLogger("job_scout.error").error(payload)
