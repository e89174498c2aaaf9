"""
Structured logging for Ledgerwise.

Module loggers (``logging.getLogger(__name__)``) all live under the
``ledgerwise`` logger configured here. ``LOG_LEVEL`` sets the level and
``USE_JSON_LOGS=true`` switches stdout to one JSON object per line, which
is where the ``extra_fields`` of the helpers below end up.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("ledgerwise")

_HANDLER_NAME = "ledgerwise-stdout"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra_fields`` merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.pathname:
            log_data["module"] = record.module
            log_data["function"] = record.funcName
            log_data["line"] = record.lineno
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)
        return json.dumps(log_data, default=str)


def configure_logging(level: Optional[str] = None, json_logs: Optional[bool] = None) -> logging.Logger:
    """(Re)configure the package logger; safe to call more than once."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_logs is None:
        json_logs = os.getenv("USE_JSON_LOGS", "false").lower() == "true"

    numeric_level = getattr(logging, level_name, logging.INFO)
    logger.setLevel(numeric_level)
    for handler in [h for h in logger.handlers if h.get_name() == _HANDLER_NAME]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setLevel(numeric_level)
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    logger.addHandler(handler)
    # keep records out of the root logger so uvicorn does not print them twice
    logger.propagate = False
    return logger


configure_logging()


def _emit(level: int, message: str, extra_fields: Dict[str, Any]) -> None:
    logger.log(level, message, extra={"extra_fields": extra_fields}, stacklevel=3)


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    client_id: Optional[str] = None,
    **kwargs
):
    """Log HTTP request."""
    extra_fields = {
        "type": "http_request",
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
    }
    if client_id:
        extra_fields["client_id"] = client_id
    extra_fields.update(kwargs)
    _emit(logging.INFO, f"{method} {path} {status_code}", extra_fields)


def log_categorization(
    vendor: str,
    category: str,
    transaction_type: str,
    confidence: float,
    decided_by: str,
    applied_patterns: Optional[list] = None,
):
    """Log one finished categorization."""
    _emit(
        logging.INFO,
        f"Categorized {vendor or '<no vendor>'} -> {transaction_type}/{category} "
        f"({confidence:.2f}, {decided_by})",
        {
            "type": "categorization",
            "vendor": vendor,
            "category": category,
            "transaction_type": transaction_type,
            "confidence": confidence,
            "decided_by": decided_by,
            "applied_patterns": applied_patterns or [],
        },
    )


def log_correction(
    correction_id: str,
    transaction_id: str,
    vendor: str,
    changed_fields: list,
    learned: Dict[str, Any],
):
    """Log a recorded correction and what the store learned from it."""
    _emit(
        logging.INFO,
        f"Recorded correction {correction_id} for {vendor or '<no vendor>'}: "
        f"{', '.join(changed_fields) or 'no changes'}",
        {
            "type": "correction",
            "correction_id": correction_id,
            "transaction_id": transaction_id,
            "vendor": vendor,
            "changed_fields": changed_fields,
            "learned": learned,
        },
    )


def log_error(
    error_type: str,
    message: str,
    context: Optional[Dict[str, Any]] = None,
    exception: Optional[Exception] = None
):
    """Log error with context."""
    extra_fields = {
        "type": "error",
        "error_type": error_type,
    }
    if context:
        extra_fields.update(context)

    if exception is not None:
        logger.error(message, exc_info=exception, extra={"extra_fields": extra_fields})
    else:
        _emit(logging.ERROR, message, extra_fields)
