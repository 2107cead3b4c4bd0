"""Logging setup for the HTTP and terminal entry points.

Modules log through `logging.getLogger(__name__)`; only entry points call
`configure_logging`. `LOG_FORMAT=json` switches to one JSON object per line.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
    "processName", "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName",
}


class JsonFormatter(logging.Formatter):
    """Render records as JSON with timestamp, level, logger, message and extras."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, ensure_ascii=False, default=str)


def configure_logging(level: str | int | None = None, json_format: bool | None = None) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        level: Level name or number; defaults to `LOG_LEVEL` or `INFO`.
        json_format: JSON output; defaults to `LOG_FORMAT == "json"`.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    if json_format is None:
        json_format = os.getenv("LOG_FORMAT") == "json"

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    logging.getLogger(__name__).debug(
        "Logging configured: level=%s json_format=%s", logging.getLevelName(root_logger.level), json_format
    )
