"""JSON log lines for reconciliation runs.

Each record becomes one object with time, level, logger and message,
plus whichever run fields the caller passed through ``extra=``. boto's
own loggers share the handler but only surface warnings.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Optional

RUN_FIELDS = ("run_id", "mode", "stage", "verdict", "user_name", "key_id", "attempt")
AWS_LOGGERS = ("botocore", "boto3", "urllib3")


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (name, getattr(record, name))
            for name in RUN_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str = "INFO", stream: Optional[IO[str]] = None) -> logging.Logger:
    """Send cup_init and AWS SDK logs to one JSON handler; returns the cup_init logger."""
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter())

    for name in AWS_LOGGERS:
        aws = logging.getLogger(name)
        aws.setLevel(logging.WARNING)
        aws.handlers[:] = [handler]
        aws.propagate = False

    logger = logging.getLogger("cup_init")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.handlers[:] = [handler]
    logger.propagate = False
    return logger
