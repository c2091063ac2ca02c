"""NDJSON encoders for log entries and snapshot records."""

import json
from collections.abc import Iterable
from typing import Any

from pipelinescope.core.encoding.jsonable import to_jsonable
from pipelinescope.core.models import LogEntry


def encode_logs(entries: Iterable[LogEntry]) -> str:
    """Encode log entries to newline-delimited JSON.

    Args:
        entries: An iterable of LogEntry objects.

    Returns:
        NDJSON string with one JSON object per line.
        Empty string if no entries.
    """
    return encode_ndjson(
        {
            "timestamp": entry.timestamp,
            "level": entry.level,
            "message": entry.message,
            "attributes": entry.attributes,
        }
        for entry in entries
    )


def encode_ndjson(items: Iterable[Any]) -> str:
    """Encode arbitrary dataclasses or plain values as NDJSON lines."""
    lines = [json.dumps(to_jsonable(item)) for item in items]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
