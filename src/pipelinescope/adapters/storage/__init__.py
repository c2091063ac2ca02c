"""Storage adapters implementing core ports."""

from pipelinescope.adapters.storage.ring_buffer import (
    RingBufferCostTrendStorage,
    RingBufferLogStorage,
)
from pipelinescope.adapters.storage.sqlite_trends import SQLiteCostTrendStorage

__all__ = [
    "RingBufferCostTrendStorage",
    "RingBufferLogStorage",
    "SQLiteCostTrendStorage",
]
