"""Python logging handler that captures dashboard logs for the /logs endpoint.

Bridges the standard library logging module to a LogStoragePort, so
collector warnings and errors can be read back as NDJSON.
"""

import logging
import traceback

from pipelinescope.core.models import LogEntry
from pipelinescope.core.ports import LogStoragePort

Scalar = str | int | float | bool

# Everything a bare LogRecord carries; anything else arrived via `extra`.
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}

_DEFAULT_INCLUDE_ATTRS = ("logger", "function", "line")


def _exception_attributes(record: logging.LogRecord) -> dict[str, Scalar]:
    if not record.exc_info:
        return {}
    exc_type, exc_value, exc_tb = record.exc_info
    found: dict[str, Scalar] = {}
    if exc_type is not None:
        found["exc_type"] = exc_type.__name__
    if exc_value is not None:
        found["exc_message"] = str(exc_value)
    if exc_tb is not None:
        found["exc_traceback"] = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    return found


class StorageLogHandler(logging.Handler):
    """Logging handler that writes records to a LogStoragePort.

    Extra fields passed with `extra={...}` become entry attributes when
    they are plain scalars. Exception info is flattened into exc_type,
    exc_message and exc_traceback.

    Example:
        ```python
        storage = RingBufferLogStorage()
        logging.getLogger("pipelinescope").addHandler(StorageLogHandler(storage))
        ```
    """

    def __init__(
        self,
        storage: LogStoragePort,
        level: int = logging.NOTSET,
        include_attrs: tuple[str, ...] = _DEFAULT_INCLUDE_ATTRS,
    ) -> None:
        super().__init__(level)
        self._storage = storage
        self._include_attrs = include_attrs

    def _source_attributes(self, record: logging.LogRecord) -> dict[str, Scalar]:
        source: dict[str, Scalar] = {
            "logger": record.name,
            "function": record.funcName or "",
            "line": record.lineno,
            "path": record.pathname,
        }
        return {key: source[key] for key in self._include_attrs if key in source}

    def to_entry(self, record: logging.LogRecord) -> LogEntry:
        """Convert a log record to a LogEntry."""
        attributes = self._source_attributes(record)
        attributes.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and isinstance(value, Scalar)
        )
        attributes.update(_exception_attributes(record))
        return LogEntry(
            timestamp=record.created,
            level=record.levelname,
            message=record.getMessage(),
            attributes=attributes,
        )

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._storage.write_sync(self.to_entry(record))
        except Exception:
            self.handleError(record)
