"""Prometheus text exposition format parser.

Parses line by line. A malformed line is skipped and counted without
aborting the rest of the scrape.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType

from pipelinescope.core.models import Sample

_METRIC_NAME = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_NAME = re.compile(r"[a-zA-Z_][a-zA-Z0-9_]*")
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n"}
_SPECIAL_VALUES = {"+Inf": float("inf"), "-Inf": float("-inf"), "NaN": float("nan")}


class _MalformedLine(ValueError):
    pass


@dataclass
class ParseResult:
    """Outcome of parsing one scrape body."""

    samples: list[Sample] = field(default_factory=list)
    skipped: int = 0


def parse_exposition(text: str, timestamp: float) -> ParseResult:
    """Parse a text exposition body into samples.

    Args:
        text: The scraped body.
        timestamp: Scrape time, used for samples without an explicit timestamp.

    Returns:
        ParseResult with the parsed samples and the number of skipped lines.
        Comment, HELP and TYPE lines are ignored, not counted as skipped.
    """
    result = ParseResult()
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            result.samples.append(_parse_sample_line(line, timestamp))
        except _MalformedLine:
            result.skipped += 1
    return result


def _parse_sample_line(line: str, default_timestamp: float) -> Sample:
    match = _METRIC_NAME.match(line)
    if match is None:
        raise _MalformedLine(line)
    name = match.group(0)
    pos = match.end()
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        labels, pos = _parse_labels(line, pos + 1)
    rest = line[pos:].split()
    if not rest or len(rest) > 2 or (pos < len(line) and not line[pos].isspace()):
        raise _MalformedLine(line)
    value = _parse_value(rest[0])
    timestamp = default_timestamp
    if len(rest) == 2:
        try:
            timestamp = int(rest[1]) / 1000.0
        except ValueError as exc:
            raise _MalformedLine(line) from exc
    return Sample(name=name, labels=MappingProxyType(labels), value=value, timestamp=timestamp)


def _parse_labels(line: str, pos: int) -> tuple[dict[str, str], int]:
    """Parse `name="value",...}` starting just after the opening brace."""
    labels: dict[str, str] = {}
    while True:
        while pos < len(line) and line[pos] in " ,":
            pos += 1
        if pos >= len(line):
            raise _MalformedLine(line)
        if line[pos] == "}":
            return labels, pos + 1
        match = _LABEL_NAME.match(line, pos)
        if match is None:
            raise _MalformedLine(line)
        label = match.group(0)
        pos = match.end()
        while pos < len(line) and line[pos] == " ":
            pos += 1
        if line[pos : pos + 2] != '="':
            raise _MalformedLine(line)
        value, pos = _parse_quoted(line, pos + 2)
        labels[label] = value


def _parse_quoted(line: str, pos: int) -> tuple[str, int]:
    chars: list[str] = []
    while pos < len(line):
        char = line[pos]
        if char == "\\":
            if pos + 1 >= len(line) or line[pos + 1] not in _ESCAPES:
                raise _MalformedLine(line)
            chars.append(_ESCAPES[line[pos + 1]])
            pos += 2
        elif char == '"':
            return "".join(chars), pos + 1
        else:
            chars.append(char)
            pos += 1
    raise _MalformedLine(line)


def _parse_value(token: str) -> float:
    if token in _SPECIAL_VALUES:
        return _SPECIAL_VALUES[token]
    try:
        return float(token)
    except ValueError as exc:
        raise _MalformedLine(token) from exc
