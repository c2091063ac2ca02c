"""Lenient query parameter parsing for the dashboard API.

Invalid values fall back to "no filter" rather than failing the request,
so a dashboard with a stale or hand-edited URL still renders.
"""

import math

from pipelinescope.core.models import InsightCategory, Severity

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def parse_timestamp_param(raw: str | None, default: float | None = 0.0) -> float | None:
    """Parse a Unix timestamp parameter.

    Returns:
        The timestamp, or default when missing, unparseable, negative,
        NaN or infinite.
    """
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if value < 0 or not math.isfinite(value):
        return default
    return value


def parse_level_param(raw: str | None) -> str | None:
    """Return the upper-cased log level, or None if missing or unknown."""
    if raw and raw.upper() in VALID_LEVELS:
        return raw.upper()
    return None


def parse_severity_param(raw: str | None) -> Severity | None:
    """Match a severity case-insensitively, None if missing or unknown."""
    if not raw:
        return None
    try:
        return Severity(raw.lower())
    except ValueError:
        return None


def parse_category_param(raw: str | None) -> InsightCategory | None:
    """Match an insight category case-insensitively, None if missing or unknown."""
    if not raw:
        return None
    for category in InsightCategory:
        if category.value.lower() == raw.lower():
            return category
    return None
