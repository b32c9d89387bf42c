"""Logging setup for the filler service.

Plain text for interactive use; JSON lines via python-json-logger when
FILLER_LOG_JSON is set (the desktop shell tails the log file).
"""

from __future__ import annotations

import logging
import uuid

from pythonjsonlogger.json import JsonFormatter

from filler_service.config import FILLER_LOG_JSON


class ServiceJsonFormatter(JsonFormatter):
    """JSON formatter that renames ``levelname`` to ``level``."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["level"] = record.levelname
        log_record.pop("levelname", None)


def setup_logging(*, level: str = "INFO", json_output: bool | None = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    use_json = FILLER_LOG_JSON if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for h in root.handlers[:]:
        root.removeHandler(h)

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(ServiceJsonFormatter(
            fmt="%(message)s %(name)s %(funcName)s %(lineno)d",
            rename_fields={"name": "logger"},
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s",
            datefmt="%H:%M:%S",
        ))

    root.addHandler(handler)


def generate_request_id() -> str:
    """Generate a unique request ID for trace correlation."""
    return uuid.uuid4().hex[:16]
