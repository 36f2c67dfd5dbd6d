"""Logging setup for CLI runs: JSON or human-readable lines on stderr."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, TextIO

from mailbox_backup.config.settings import LoggingSettings

_STANDARD_RECORD_ATTRS: frozenset[str] = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__,
) | {"message", "asctime"}

_NOISY_LOGGERS: dict[str, int] = {
    "googleapiclient.discovery": logging.WARNING,
    "googleapiclient.discovery_cache": logging.ERROR,
    "google_auth_oauthlib.flow": logging.WARNING,
    "requests_oauthlib": logging.WARNING,
    "oauthlib": logging.WARNING,
    "urllib3": logging.WARNING,
}


def _jsonable(value: object) -> Any:
    """Return value unchanged if json can encode it, else its str()."""
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class JsonLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record, including `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON object.

        Args:
            record: Log record to format.

        Returns:
            JSON string.
        """
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS or key.startswith("_"):
                continue
            payload[key] = _jsonable(value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def configure_logging(*, settings: LoggingSettings, stream: TextIO | None = None) -> None:
    """Configure root logging for a CLI run.

    Args:
        settings: Logging settings (level and JSON/human output).
        stream: Target stream, stderr when omitted.
    """
    level_name = settings.level.strip().upper()
    level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    if settings.json_logs:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ),
        )

    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name, noisy_level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, noisy_level))
