"""Logging setup for roleguard.

Output format and level come from ``RG_LOG_FORMAT`` (``text`` or ``json``)
and ``RG_LOG_LEVEL`` through :class:`roleguard.config.Settings`. In JSON
mode every line is one object, and the access-decision fields passed via
``extra=`` become top-level keys.
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from roleguard.config import Settings

#: Decision fields dropped from a JSON line when their value is ``None``.
STRUCTURED_FIELDS: tuple[str, ...] = (
    "principal_id",
    "resource",
    "granted",
    "used_delegated_role",
    "request_id",
    "event_category",
    "action",
)

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class StructuredJsonFormatter(JsonFormatter):
    """One JSON object per record, with tracebacks as a list of lines."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        for key in STRUCTURED_FIELDS:
            if key in log_record and log_record[key] is None:
                del log_record[key]
        if record.exc_info and record.exc_info[1] is not None:
            log_record.pop("exc_info", None)
            log_record["traceback"] = traceback.format_exception(*record.exc_info)


def setup_logging(config: Settings | None = None) -> None:
    """Install a single stream handler on the root logger.

    *config* defaults to a fresh ``Settings()`` so the current environment
    is read; an invalid ``RG_LOG_LEVEL`` or ``RG_LOG_FORMAT`` raises.
    """
    config = config or Settings()
    level = logging.getLevelName(config.log_level)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    if config.log_format == "json":
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    # Replace rather than append so repeated calls do not double-log.
    root.handlers[:] = [handler]
    root.setLevel(level)


def log_startup_info(registry: Any, config: Settings | None = None) -> None:
    """Log version and role table size once the registry has validated."""
    import roleguard

    config = config or Settings()
    logging.getLogger("roleguard").info(
        "roleguard started",
        extra={
            "version": roleguard.__version__,
            "role_count": len(registry.roles),
            "dynamic_check_count": len(registry.dynamic_checks),
            "app_domain_status": "configured" if config.app_domain else "unset",
            "log_format": config.log_format,
        },
    )
