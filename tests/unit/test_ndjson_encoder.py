"""Tests for NDJSON and JSON-compatible encoding."""

import json
import math

import pytest

from pipelinescope.core.encoding.jsonable import to_jsonable
from pipelinescope.core.encoding.ndjson import encode_logs, encode_ndjson
from pipelinescope.core.models import HealthState, LogEntry, SeriesKey
from pipelinescope.core.snapshots import CostSummary


class TestEncodeLogs:
    """Tests for encode_logs()."""

    @pytest.mark.encoding
    def test_empty_input(self) -> None:
        assert encode_logs([]) == ""

    @pytest.mark.encoding
    def test_one_object_per_line(self) -> None:
        entries = [
            LogEntry(timestamp=1.0, level="INFO", message="a", attributes={"n": 1}),
            LogEntry(timestamp=2.0, level="ERROR", message="b"),
        ]
        lines = encode_logs(entries).splitlines()
        assert [json.loads(line) for line in lines] == [
            {"timestamp": 1.0, "level": "INFO", "message": "a", "attributes": {"n": 1}},
            {"timestamp": 2.0, "level": "ERROR", "message": "b", "attributes": {}},
        ]

    @pytest.mark.encoding
    def test_ends_with_newline(self) -> None:
        assert encode_logs([LogEntry(timestamp=1.0, level="INFO", message="a")]).endswith("\n")


class TestToJsonable:
    """Tests for to_jsonable()."""

    @pytest.mark.encoding
    def test_dataclass_includes_derived_fields(self) -> None:
        data = to_jsonable(CostSummary(run_count=1, cpu_cost=1.0, memory_cost=0.5))
        assert data["total_cost"] == 1.5
        assert data["run_count"] == 1

    @pytest.mark.encoding
    def test_enums_become_values(self) -> None:
        assert to_jsonable([HealthState.DEGRADED]) == ["Degraded"]

    @pytest.mark.encoding
    def test_non_finite_floats_become_null(self) -> None:
        assert to_jsonable({"a": math.inf, "b": math.nan, "c": 1.0}) == {
            "a": None,
            "b": None,
            "c": 1.0,
        }

    @pytest.mark.encoding
    def test_series_key_mapping_keys_are_rendered(self) -> None:
        data = to_jsonable({SeriesKey("m", (("a", "1"),)): (1, 2)})
        assert data == {'m{a="1"}': [1, 2]}

    @pytest.mark.encoding
    def test_encode_ndjson_of_dataclasses(self) -> None:
        text = encode_ndjson([CostSummary(), CostSummary(run_count=2)])
        assert [json.loads(line)["run_count"] for line in text.splitlines()] == [0, 2]
