"""Tests for insight rules and generation."""

from types import MappingProxyType

import pytest

from pipelinescope.core.cost import build_cost_snapshot
from pipelinescope.core.insights import (
    RULES,
    InsightInputs,
    InsightThresholds,
    cost_outliers,
    duration_regressions,
    failure_predictions,
    generate_insights,
    high_cost_pipelines,
    insight_id,
    long_running_pipelines,
    low_success_rates,
    prediction_confidence,
    resource_waste,
    severity_for_ratio,
    severity_for_success_rate,
)
from pipelinescope.core.models import (
    CostRecord,
    InsightCategory,
    RateTable,
    RunStatus,
    Severity,
)
from pipelinescope.core.snapshots import CostSnapshot, MetricsSnapshot, RunMetrics

RATES = RateTable(0.05, 0.01, 0.001)


def cost_record(
    name: str,
    cost: float,
    namespace: str = "ci",
    pipeline: str = "build",
    frozen: bool = True,
    **usage: float,
) -> CostRecord:
    observed = bool(usage)
    return CostRecord(
        namespace=namespace,
        name=name,
        pipeline=pipeline,
        status=RunStatus.SUCCEEDED if frozen else RunStatus.RUNNING,
        rates=RATES,
        started_at=0.0,
        last_accounted_at=0.0,
        cpu_cost=cost,
        frozen=frozen,
        observed=observed,
        **usage,
    )


def cost_snapshot(*records: CostRecord) -> CostSnapshot:
    return build_cost_snapshot({r.key: r for r in records}, 100.0)


def metrics_snapshot(
    pipelines: tuple[RunMetrics, ...] = (),
    tasks: tuple[RunMetrics, ...] = (),
) -> MetricsSnapshot:
    return MetricsSnapshot(
        timestamp=100.0,
        pipeline_metrics=MappingProxyType({m.key: m for m in pipelines}),
        task_metrics=MappingProxyType({m.key: m for m in tasks}),
    )


def history(*means: float) -> tuple[tuple[float, float], ...]:
    return tuple((float(i * 15), mean) for i, mean in enumerate(means))


def inputs(
    metrics: MetricsSnapshot | None = None,
    cost: CostSnapshot | None = None,
    generated_at: float = 500.0,
) -> InsightInputs:
    return InsightInputs(metrics=metrics, cost=cost, generated_at=generated_at)


class TestSeverityMapping:
    """Tests for the severity helpers."""

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("ratio", "expected"),
        [(0.5, Severity.LOW), (1.5, Severity.MEDIUM), (2.5, Severity.HIGH), (3.5, Severity.CRITICAL)],
    )
    def test_ratio(self, ratio: float, expected: Severity) -> None:
        assert severity_for_ratio(ratio) is expected

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("rate", "expected"),
        [(40, Severity.CRITICAL), (60, Severity.HIGH), (80, Severity.MEDIUM), (90, Severity.LOW)],
    )
    def test_success_rate(self, rate: float, expected: Severity) -> None:
        assert severity_for_success_rate(rate) is expected


class TestCostOutliers:
    """Tests for the cost outlier rule."""

    @pytest.mark.core
    def test_flags_run_far_above_namespace_average(self) -> None:
        cost = cost_snapshot(
            cost_record("a", 1.0), cost_record("b", 1.0), cost_record("c", 10.0)
        )
        found = cost_outliers(inputs(cost=cost))
        assert len(found) == 1
        insight = found[0]
        assert insight.sources == ("ci/c",)
        assert insight.category is InsightCategory.COST_ANOMALY
        assert insight.severity is Severity.HIGH
        assert insight.score == pytest.approx(2.5)

    @pytest.mark.core
    def test_needs_enough_completed_runs(self) -> None:
        cost = cost_snapshot(
            cost_record("a", 1.0), cost_record("b", 10.0), cost_record("c", 50.0, frozen=False)
        )
        assert cost_outliers(inputs(cost=cost)) == []

    @pytest.mark.core
    def test_namespaces_are_judged_separately(self) -> None:
        cost = cost_snapshot(
            cost_record("a", 1.0),
            cost_record("b", 1.0),
            cost_record("c", 1.0),
            cost_record("d", 100.0, namespace="ops"),
        )
        assert cost_outliers(inputs(cost=cost)) == []

    @pytest.mark.core
    def test_without_cost_snapshot(self) -> None:
        assert cost_outliers(inputs()) == []


class TestDurationRegressions:
    """Tests for the duration regression rule."""

    @pytest.mark.core
    def test_latest_mean_far_above_median(self) -> None:
        metric = RunMetrics(
            name="build", namespace="ci", duration_history=history(10, 10, 10, 10, 40)
        )
        found = duration_regressions(inputs(metrics=metrics_snapshot(pipelines=(metric,))))
        assert len(found) == 1
        assert found[0].category is InsightCategory.PERFORMANCE_REGRESSION
        assert found[0].severity is Severity.CRITICAL
        assert found[0].sources == ("pipeline:ci/build",)
        assert found[0].context["median_duration"] == 10

    @pytest.mark.core
    def test_task_regressions_are_reported_too(self) -> None:
        metric = RunMetrics(
            name="compile", namespace="ci", duration_history=history(10, 10, 10, 10, 16)
        )
        found = duration_regressions(inputs(metrics=metrics_snapshot(tasks=(metric,))))
        assert [i.rule for i in found] == ["task_duration_regression"]
        assert found[0].severity is Severity.MEDIUM

    @pytest.mark.core
    def test_short_history_is_not_judged(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", duration_history=history(10, 10, 50))
        assert duration_regressions(inputs(metrics=metrics_snapshot(pipelines=(metric,)))) == []

    @pytest.mark.core
    def test_within_threshold(self) -> None:
        metric = RunMetrics(
            name="build", namespace="ci", duration_history=history(10, 10, 10, 10, 14)
        )
        assert duration_regressions(inputs(metrics=metrics_snapshot(pipelines=(metric,)))) == []


class TestResourceWaste:
    """Tests for the resource waste rule."""

    @pytest.mark.core
    def test_flags_overprovisioned_cpu(self) -> None:
        record = cost_record(
            "a", 1.0, cpu_seconds=100.0, requested_cpu_seconds=1000.0
        )
        found = resource_waste(inputs(cost=cost_snapshot(record)))
        assert len(found) == 1
        assert found[0].category is InsightCategory.RESOURCE_WASTE
        assert found[0].severity is Severity.HIGH
        assert found[0].context == {"cpu_ratio": 10.0}

    @pytest.mark.core
    def test_moderate_waste_is_medium(self) -> None:
        record = cost_record(
            "a", 1.0, memory_byte_seconds=100.0, requested_memory_byte_seconds=500.0
        )
        found = resource_waste(inputs(cost=cost_snapshot(record)))
        assert found[0].severity is Severity.MEDIUM

    @pytest.mark.core
    def test_estimated_usage_is_never_waste(self) -> None:
        record = cost_record("a", 1.0)
        assert resource_waste(inputs(cost=cost_snapshot(record))) == []


class TestRecommendations:
    """Tests for the recommendation rules."""

    @pytest.mark.core
    def test_high_cost_pipeline(self) -> None:
        cost = cost_snapshot(cost_record("a", 12.0), cost_record("b", 8.0))
        found = high_cost_pipelines(inputs(cost=cost))
        assert len(found) == 1
        assert found[0].category is InsightCategory.RECOMMENDATION
        assert found[0].severity is Severity.MEDIUM
        assert found[0].context["estimated_savings"] == pytest.approx(6.0)

    @pytest.mark.core
    def test_cheap_pipeline_is_not_flagged(self) -> None:
        assert high_cost_pipelines(inputs(cost=cost_snapshot(cost_record("a", 2.0)))) == []

    @pytest.mark.core
    def test_long_running_pipeline(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", average_duration=1500.0)
        found = long_running_pipelines(inputs(metrics=metrics_snapshot(pipelines=(metric,))))
        assert len(found) == 1
        assert found[0].severity is Severity.MEDIUM

    @pytest.mark.core
    def test_low_success_rate(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", total_runs=20, success_rate=60.0)
        found = low_success_rates(inputs(metrics=metrics_snapshot(pipelines=(metric,))))
        assert len(found) == 1
        assert found[0].severity is Severity.HIGH

    @pytest.mark.core
    def test_low_success_rate_needs_enough_runs(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", total_runs=5, success_rate=0.0)
        assert low_success_rates(inputs(metrics=metrics_snapshot(pipelines=(metric,)))) == []

    @pytest.mark.core
    def test_failure_prediction(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", total_runs=25, success_rate=60.0)
        found = failure_predictions(inputs(metrics=metrics_snapshot(pipelines=(metric,))))
        assert [i.rule for i in found] == ["failure_prediction"]
        assert found[0].category is InsightCategory.RECOMMENDATION
        assert found[0].severity is Severity.HIGH
        assert found[0].score == pytest.approx(0.4)
        assert found[0].context["confidence"] == pytest.approx(0.5)

    @pytest.mark.core
    @pytest.mark.parametrize(
        ("total_runs", "success_rate"),
        [(4, 0.0), (10, 80.0), (10, 95.0)],
    )
    def test_failure_prediction_needs_runs_and_failures(
        self, total_runs: int, success_rate: float
    ) -> None:
        metric = RunMetrics(
            name="build", namespace="ci", total_runs=total_runs, success_rate=success_rate
        )
        assert failure_predictions(inputs(metrics=metrics_snapshot(pipelines=(metric,)))) == []

    @pytest.mark.core
    def test_prediction_confidence_is_capped(self) -> None:
        assert prediction_confidence(10) == pytest.approx(0.2)
        assert prediction_confidence(500) == 0.95


class TestGenerateInsights:
    """Tests for generate_insights()."""

    def _inputs(self) -> InsightInputs:
        metric = RunMetrics(
            name="build",
            namespace="ci",
            total_runs=20,
            success_rate=60.0,
            average_duration=1500.0,
            duration_history=history(10, 10, 10, 10, 40),
        )
        cost = cost_snapshot(
            cost_record("a", 1.0), cost_record("b", 1.0), cost_record("c", 30.0)
        )
        return inputs(metrics=metrics_snapshot(pipelines=(metric,)), cost=cost)

    @pytest.mark.core
    def test_identical_inputs_give_identical_output(self) -> None:
        assert generate_insights(self._inputs()) == generate_insights(self._inputs())

    @pytest.mark.core
    def test_timestamp_comes_from_inputs(self) -> None:
        snapshot = generate_insights(self._inputs())
        assert snapshot.timestamp == 500.0
        assert {i.generated_at for i in snapshot.insights} == {500.0}

    @pytest.mark.core
    def test_rules_run_in_order(self) -> None:
        rules = [i.rule for i in generate_insights(self._inputs()).insights]
        assert rules == [
            "cost_outlier",
            "pipeline_duration_regression",
            "high_cost_pipeline",
            "long_pipeline_duration",
            "low_success_rate",
            "failure_prediction",
        ]

    @pytest.mark.core
    def test_failing_rule_does_not_stop_the_others(self, caplog: pytest.LogCaptureFixture) -> None:
        def broken(_inputs: InsightInputs) -> list:
            raise RuntimeError("boom")

        snapshot = generate_insights(self._inputs(), rules=(broken, *RULES))
        assert len(snapshot.insights) == 6
        assert "Insight rule failed" in caplog.text

    @pytest.mark.core
    def test_within_rule_ordered_by_severity(self) -> None:
        cost = cost_snapshot(
            *(cost_record(f"r{i}", 1.0) for i in range(10)),
            cost_record("pricey", 8.0),
            cost_record("huge", 20.0),
        )
        found = generate_insights(inputs(cost=cost), rules=(cost_outliers,)).insights
        assert [i.sources for i in found] == [("ci/huge",), ("ci/pricey",)]
        assert found[0].severity.rank > found[1].severity.rank

    @pytest.mark.core
    def test_no_inputs_no_insights(self) -> None:
        assert generate_insights(inputs()).insights == ()

    @pytest.mark.core
    def test_ids_are_stable_per_rule_and_source(self) -> None:
        assert insight_id("cost_outlier", ["ci/a"]) == insight_id("cost_outlier", ["ci/a"])
        assert insight_id("cost_outlier", ["ci/a"]) != insight_id("cost_outlier", ["ci/b"])

    @pytest.mark.core
    def test_custom_thresholds(self) -> None:
        metric = RunMetrics(name="build", namespace="ci", average_duration=100.0)
        custom = InsightInputs(
            metrics=metrics_snapshot(pipelines=(metric,)),
            cost=None,
            generated_at=1.0,
            thresholds=InsightThresholds(long_duration_seconds=60.0),
        )
        assert len(long_running_pipelines(custom)) == 1
