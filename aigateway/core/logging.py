"""Logging setup for processes embedding the gateway.

Adapters and the breaker log through module loggers; records may carry
`provider`, `model` and `service_id` extras, which the JSON formatter lifts
into top-level fields.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TextIO

from aigateway.core.config import Settings, settings

CONTEXT_FIELDS = ("provider", "model", "service_id")

# Third-party loggers that are chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "redis")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr in CONTEXT_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                log_data[attr] = value
        if record.exc_info and record.exc_info[1]:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(config: Settings | None = None, stream: TextIO | None = None) -> None:
    """Install a single root handler at the configured level."""
    config = config or settings
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if config.log_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
        )
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def truncate(text: str, limit: int = 200) -> str:
    """Shorten prompts before they go into log lines."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
