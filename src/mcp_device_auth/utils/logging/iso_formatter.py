"""Log formatting utilities for JSONL output.

Provides ISO 8601 timestamp formatting for the system log file. Structured
messages are expected to be dicts; any credential-bearing field that slips
into one is redacted before it reaches disk.
"""

from __future__ import annotations

__all__ = ["ISO8601Formatter", "REDACTED_FIELDS"]

import json
import logging
from datetime import datetime, timezone
from typing import Any

# Dict keys whose values must never be written to a log file
REDACTED_FIELDS: frozenset[str] = frozenset(
    {"access_token", "refresh_token", "id_token", "device_code", "client_secret"}
)


class ISO8601Formatter(logging.Formatter):
    """Custom formatter with ISO 8601 timestamps (UTC) for JSONL output.

    Format: YYYY-MM-DDTHH:MM:SS.sssZ
    Example: 2025-12-04T10:48:37.123Z
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSONL with ISO 8601 timestamp.

        Args:
            record: The log record to format.

        Returns:
            str: JSON-formatted log entry with timestamp and level.
        """
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        if isinstance(record.msg, dict):
            log_data = _redact(record.msg)
        else:
            log_data = {"message": record.getMessage()}

        log_entry = {"time": timestamp, "level": record.levelname, **log_data}
        return json.dumps(log_entry, default=str)


def _redact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: "[REDACTED]" if key in REDACTED_FIELDS else value for key, value in data.items()}
