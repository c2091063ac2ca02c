"""Heuristic insight rules over metrics and cost snapshots.

Rules run in a fixed order and are evaluated independently: one rule
raising does not prevent the others from producing insights. Generation is
a pure function of its inputs, including the timestamp, so identical
snapshots always produce identical insights.
"""

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from pipelinescope.core.metrics import percentile
from pipelinescope.core.models import CostRecord, Insight, InsightCategory, Severity
from pipelinescope.core.snapshots import (
    CostSnapshot,
    InsightsSnapshot,
    MetricsSnapshot,
    RunMetrics,
)

logger = logging.getLogger(__name__)

_INSIGHT_NAMESPACE = uuid.UUID("5b0f7a52-4f3e-4c4b-9d8e-2f1c1b6d7e11")


@dataclass(frozen=True)
class InsightThresholds:
    """Tunable thresholds for the insight rules.

    Attributes:
        cost_outlier_multiplier: Run cost / namespace average that flags an outlier.
        cost_min_runs: Completed runs a namespace needs before outliers are judged.
        regression_multiplier: Latest mean duration / historical median that
            flags a regression.
        regression_min_history: Duration history points needed to judge a regression.
        waste_multiplier: Requested / observed usage that flags waste.
        high_cost_threshold: Aggregate pipeline cost in dollars worth optimising.
        high_cost_savings: Fraction of cost assumed recoverable by optimisation.
        long_duration_seconds: Average pipeline duration worth optimising.
        failure_min_runs: Runs needed before a success rate is judged.
        failure_success_rate: Success rate (percent) below which runs are flagged.
        prediction_min_runs: Runs needed before the next run's outcome is predicted.
        prediction_failure_probability: Failure probability above which a
            failing next run is predicted.
    """

    cost_outlier_multiplier: float = 2.0
    cost_min_runs: int = 3
    regression_multiplier: float = 1.5
    regression_min_history: int = 5
    waste_multiplier: float = 4.0
    high_cost_threshold: float = 10.0
    high_cost_savings: float = 0.3
    long_duration_seconds: float = 600.0
    failure_min_runs: int = 10
    failure_success_rate: float = 80.0
    prediction_min_runs: int = 5
    prediction_failure_probability: float = 0.2


@dataclass(frozen=True)
class InsightInputs:
    """Everything a rule may look at."""

    metrics: MetricsSnapshot | None
    cost: CostSnapshot | None
    generated_at: float
    thresholds: InsightThresholds = field(default_factory=InsightThresholds)


Rule = Callable[[InsightInputs], Iterable[Insight]]


def insight_id(rule: str, sources: Sequence[str]) -> str:
    """Deterministic id: the same rule firing for the same sources keeps its id."""
    return str(uuid.uuid5(_INSIGHT_NAMESPACE, f"{rule}:{'|'.join(sources)}"))


def _insight(
    inputs: InsightInputs,
    rule: str,
    category: InsightCategory,
    severity: Severity,
    message: str,
    sources: tuple[str, ...],
    score: float,
    context: Mapping[str, float | str],
) -> Insight:
    return Insight(
        insight_id=insight_id(rule, sources),
        category=category,
        severity=severity,
        message=message,
        sources=sources,
        generated_at=inputs.generated_at,
        rule=rule,
        score=score,
        context=context,
    )


def severity_for_ratio(ratio: float) -> Severity:
    if ratio > 3:
        return Severity.CRITICAL
    if ratio > 2:
        return Severity.HIGH
    if ratio > 1:
        return Severity.MEDIUM
    return Severity.LOW


def severity_for_success_rate(rate: float) -> Severity:
    if rate < 50:
        return Severity.CRITICAL
    if rate < 70:
        return Severity.HIGH
    if rate < 85:
        return Severity.MEDIUM
    return Severity.LOW


def cost_outliers(inputs: InsightInputs) -> list[Insight]:
    """Completed runs costing far more than their namespace's average run."""
    if inputs.cost is None:
        return []
    limits = inputs.thresholds
    by_namespace: dict[str, list[CostRecord]] = defaultdict(list)
    for record in inputs.cost.records.values():
        if record.frozen:
            by_namespace[record.namespace].append(record)

    found: list[Insight] = []
    for namespace, records in by_namespace.items():
        if len(records) < limits.cost_min_runs:
            continue
        average = sum(r.total_cost for r in records) / len(records)
        if average <= 0:
            continue
        for record in records:
            ratio = record.total_cost / average
            if ratio <= limits.cost_outlier_multiplier:
                continue
            found.append(
                _insight(
                    inputs,
                    "cost_outlier",
                    InsightCategory.COST_ANOMALY,
                    severity_for_ratio(ratio),
                    f"Pipeline run {record.key} cost ${record.total_cost:.2f}, "
                    f"{ratio:.1f}x the {namespace} average of ${average:.2f}",
                    (record.key,),
                    ratio,
                    {"cost": record.total_cost, "namespace_average": average},
                )
            )
    return found


def _regression(inputs: InsightInputs, kind: str, metric: RunMetrics) -> Insight | None:
    limits = inputs.thresholds
    history = metric.duration_history
    if len(history) < limits.regression_min_history:
        return None
    latest = history[-1][1]
    baseline = percentile([mean for _, mean in history[:-1]], 50)
    if baseline <= 0:
        return None
    ratio = latest / baseline
    if ratio <= limits.regression_multiplier:
        return None
    return _insight(
        inputs,
        f"{kind}_duration_regression",
        InsightCategory.PERFORMANCE_REGRESSION,
        severity_for_ratio(ratio),
        f"{kind.capitalize()} {metric.key} took {latest:.1f}s on average recently, "
        f"{ratio:.1f}x its median of {baseline:.1f}s",
        (f"{kind}:{metric.key}",),
        ratio,
        {"latest_duration": latest, "median_duration": baseline},
    )


def duration_regressions(inputs: InsightInputs) -> list[Insight]:
    """Pipelines or tasks whose latest durations exceed their historical median."""
    if inputs.metrics is None:
        return []
    found: list[Insight] = []
    for kind, metrics in (
        ("pipeline", inputs.metrics.pipeline_metrics),
        ("task", inputs.metrics.task_metrics),
    ):
        for metric in metrics.values():
            insight = _regression(inputs, kind, metric)
            if insight is not None:
                found.append(insight)
    return found


def resource_waste(inputs: InsightInputs) -> list[Insight]:
    """Runs requesting far more CPU or memory than they were observed to use."""
    if inputs.cost is None:
        return []
    multiplier = inputs.thresholds.waste_multiplier
    found: list[Insight] = []
    for record in inputs.cost.records.values():
        if not record.observed:
            continue
        ratios: dict[str, float] = {}
        if record.cpu_seconds > 0:
            ratios["cpu"] = record.requested_cpu_seconds / record.cpu_seconds
        if record.memory_byte_seconds > 0:
            ratios["memory"] = record.requested_memory_byte_seconds / record.memory_byte_seconds
        wasted = {name: ratio for name, ratio in ratios.items() if ratio > multiplier}
        if not wasted:
            continue
        worst = max(wasted.values())
        found.append(
            _insight(
                inputs,
                "resource_waste",
                InsightCategory.RESOURCE_WASTE,
                Severity.HIGH if worst > 2 * multiplier else Severity.MEDIUM,
                f"Pipeline run {record.key} requested "
                + ", ".join(f"{ratio:.1f}x more {name}" for name, ratio in sorted(wasted.items()))
                + " than it used",
                (record.key,),
                worst,
                {f"{name}_ratio": ratio for name, ratio in wasted.items()},
            )
        )
    return found


def high_cost_pipelines(inputs: InsightInputs) -> list[Insight]:
    """Pipelines whose aggregate cost is worth optimising."""
    if inputs.cost is None:
        return []
    limits = inputs.thresholds
    found: list[Insight] = []
    for pipeline in inputs.cost.pipelines.values():
        total = pipeline.summary.total_cost
        if total <= limits.high_cost_threshold:
            continue
        savings = total * limits.high_cost_savings
        found.append(
            _insight(
                inputs,
                "high_cost_pipeline",
                InsightCategory.RECOMMENDATION,
                Severity.HIGH if total > 5 * limits.high_cost_threshold else Severity.MEDIUM,
                f"Pipeline {pipeline.key} has cost ${total:.2f}. Caching dependencies, "
                f"right-sizing requests or parallelising tasks could save about ${savings:.2f}",
                (f"pipeline:{pipeline.key}",),
                total,
                {"total_cost": total, "estimated_savings": savings},
            )
        )
    return found


def long_running_pipelines(inputs: InsightInputs) -> list[Insight]:
    """Pipelines whose average duration is long enough to be worth splitting up."""
    if inputs.metrics is None:
        return []
    limit = inputs.thresholds.long_duration_seconds
    found: list[Insight] = []
    for metric in inputs.metrics.pipeline_metrics.values():
        if metric.average_duration <= limit:
            continue
        found.append(
            _insight(
                inputs,
                "long_pipeline_duration",
                InsightCategory.RECOMMENDATION,
                Severity.MEDIUM if metric.average_duration > 2 * limit else Severity.LOW,
                f"Pipeline {metric.key} averages {metric.average_duration / 60:.1f} minutes. "
                "Consider running independent tasks in parallel",
                (f"pipeline:{metric.key}",),
                metric.average_duration,
                {"average_duration": metric.average_duration},
            )
        )
    return found


def low_success_rates(inputs: InsightInputs) -> list[Insight]:
    """Pipelines that fail too often."""
    if inputs.metrics is None:
        return []
    limits = inputs.thresholds
    found: list[Insight] = []
    for metric in inputs.metrics.pipeline_metrics.values():
        if metric.total_runs < limits.failure_min_runs:
            continue
        if metric.success_rate >= limits.failure_success_rate:
            continue
        found.append(
            _insight(
                inputs,
                "low_success_rate",
                InsightCategory.RECOMMENDATION,
                severity_for_success_rate(metric.success_rate),
                f"Pipeline {metric.key} succeeded in {metric.success_rate:.1f}% "
                f"of {metric.total_runs} runs. Review recent failures",
                (f"pipeline:{metric.key}",),
                metric.success_rate,
                {"success_rate": metric.success_rate, "total_runs": float(metric.total_runs)},
            )
        )
    return found


def prediction_confidence(runs: int) -> float:
    """Confidence grows with the number of observed runs, capped at 0.95."""
    return min(0.95, runs / 50)


def failure_predictions(inputs: InsightInputs) -> list[Insight]:
    """Pipelines whose failure rate makes a failing next run likely."""
    if inputs.metrics is None:
        return []
    limits = inputs.thresholds
    found: list[Insight] = []
    for metric in inputs.metrics.pipeline_metrics.values():
        if metric.total_runs < limits.prediction_min_runs:
            continue
        probability = (100.0 - metric.success_rate) / 100.0
        if probability <= limits.prediction_failure_probability:
            continue
        found.append(
            _insight(
                inputs,
                "failure_prediction",
                InsightCategory.RECOMMENDATION,
                severity_for_success_rate(metric.success_rate),
                f"Pipeline {metric.key} is likely to fail its next run "
                f"({probability:.0%} of {metric.total_runs} runs did not succeed)",
                (f"pipeline:{metric.key}",),
                probability,
                {
                    "failure_probability": probability,
                    "confidence": prediction_confidence(metric.total_runs),
                },
            )
        )
    return found


RULES: tuple[Rule, ...] = (
    cost_outliers,
    duration_regressions,
    resource_waste,
    high_cost_pipelines,
    long_running_pipelines,
    low_success_rates,
    failure_predictions,
)


def generate_insights(
    inputs: InsightInputs,
    rules: Sequence[Rule] = RULES,
) -> InsightsSnapshot:
    """Run every rule over the inputs.

    Args:
        inputs: Metrics and cost snapshots plus thresholds.
        rules: Rules to run, in order.

    Returns:
        InsightsSnapshot stamped with inputs.generated_at. Insights keep rule
        order; within one rule they are ordered by severity, then sources.
    """
    insights: list[Insight] = []
    for rule in rules:
        try:
            produced = list(rule(inputs))
        except Exception:
            logger.exception(
                "Insight rule failed", extra={"rule": getattr(rule, "__name__", repr(rule))}
            )
            continue
        produced.sort(key=lambda i: (-i.severity.rank, i.sources, i.insight_id))
        insights.extend(produced)
    return InsightsSnapshot(timestamp=inputs.generated_at, insights=tuple(insights))
