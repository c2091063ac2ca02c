"""Dashboard configuration from defaults and environment variables."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from pipelinescope.core.controlplane import OPERATOR_NAMESPACES
from pipelinescope.core.errors import ConfigError
from pipelinescope.core.insights import InsightThresholds
from pipelinescope.core.models import RateTable

logger = logging.getLogger(__name__)

DEFAULT_METRICS_ENDPOINT = "http://tekton-pipelines-controller:9090/metrics"
DEFAULT_CONTROL_PLANE_NAMESPACE = "tekton-pipelines"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class DashboardConfig:
    """Settings for collectors, retention and storage.

    Attributes:
        metrics_endpoint: URL of the pipeline controller's metrics endpoint.
        enable_cost_tracking: Run the cost collector.
        enable_insights: Run the insights engine.
        cpu_cost_per_hour: Price of one CPU core for one hour.
        memory_cost_per_gb_hour: Price of one GiB of memory for one hour.
        storage_cost_per_gb_hour: Price of one GiB of storage for one hour.
        metrics_interval: Seconds between metrics scrapes.
        cost_interval: Seconds between cost accounting ticks.
        trace_interval: Seconds between trace rebuilds.
        insights_interval: Seconds between insight generation ticks.
        control_plane_interval: Seconds between control-plane health checks.
        metrics_retention: Age in seconds after which metric samples are evicted.
        run_retention: Seconds a run may be absent before its cost record
            and trace are dropped.
        cost_lookback: Terminal runs that completed longer ago than this
            when first observed are not accounted.
        trend_retention: Age in seconds after which cost trend points are deleted.
        trend_max_points: Capacity of the in-memory cost trend buffer.
        cost_history_db: SQLite path for cost trend history, None for in-memory.
        control_plane_namespace: Namespace of the engine's own deployments.
        operator_namespaces: Namespaces the engine operator may run in, checked
            when they exist.
        shutdown_grace_seconds: Time a collector gets to finish its tick on stop.
        insight_thresholds: Tunable insight rule thresholds.
    """

    metrics_endpoint: str = DEFAULT_METRICS_ENDPOINT
    enable_cost_tracking: bool = True
    enable_insights: bool = True
    cpu_cost_per_hour: float = 0.05
    memory_cost_per_gb_hour: float = 0.01
    storage_cost_per_gb_hour: float = 0.001
    metrics_interval: float = 15.0
    cost_interval: float = 300.0
    trace_interval: float = 30.0
    insights_interval: float = 300.0
    control_plane_interval: float = 30.0
    metrics_retention: float = 24 * 3600.0
    run_retention: float = 3600.0
    cost_lookback: float = 24 * 3600.0
    trend_retention: float = 7 * 24 * 3600.0
    trend_max_points: int = 2016
    cost_history_db: str | None = None
    control_plane_namespace: str = DEFAULT_CONTROL_PLANE_NAMESPACE
    operator_namespaces: tuple[str, ...] = OPERATOR_NAMESPACES
    shutdown_grace_seconds: float = 5.0
    insight_thresholds: InsightThresholds = field(default_factory=InsightThresholds)

    @property
    def rates(self) -> RateTable:
        return RateTable(
            cpu_per_hour=self.cpu_cost_per_hour,
            memory_per_gb_hour=self.memory_cost_per_gb_hour,
            storage_per_gb_hour=self.storage_cost_per_gb_hour,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DashboardConfig":
        """Build a config from environment variables.

        Unset variables keep their defaults. Unparseable values are logged
        and fall back to the default as well.

        Recognised variables: METRICS_ENDPOINT, ENABLE_COST_TRACKING,
        ENABLE_AI_INSIGHTS, CPU_COST_PER_HOUR, MEMORY_COST_PER_GB_HOUR,
        STORAGE_COST_PER_GB_HOUR, COST_HISTORY_DB, CONTROL_PLANE_NAMESPACE,
        OPERATOR_NAMESPACES (comma-separated).
        """
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            metrics_endpoint=env.get("METRICS_ENDPOINT", defaults.metrics_endpoint),
            enable_cost_tracking=_env_bool(
                env, "ENABLE_COST_TRACKING", defaults.enable_cost_tracking
            ),
            enable_insights=_env_bool(env, "ENABLE_AI_INSIGHTS", defaults.enable_insights),
            cpu_cost_per_hour=_env_float(env, "CPU_COST_PER_HOUR", defaults.cpu_cost_per_hour),
            memory_cost_per_gb_hour=_env_float(
                env, "MEMORY_COST_PER_GB_HOUR", defaults.memory_cost_per_gb_hour
            ),
            storage_cost_per_gb_hour=_env_float(
                env, "STORAGE_COST_PER_GB_HOUR", defaults.storage_cost_per_gb_hour
            ),
            cost_history_db=env.get("COST_HISTORY_DB") or defaults.cost_history_db,
            control_plane_namespace=env.get(
                "CONTROL_PLANE_NAMESPACE", defaults.control_plane_namespace
            ),
            operator_namespaces=_env_list(
                env, "OPERATOR_NAMESPACES", defaults.operator_namespaces
            ),
        )


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning(
        "Ignoring unparseable boolean environment variable",
        extra={"variable": name, "value": raw},
    )
    return default


def _env_list(env: Mapping[str, str], name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Ignoring unparseable numeric environment variable",
            extra={"variable": name, "value": raw},
        )
        return default


def validate_endpoint(url: str) -> str:
    """Return the URL unchanged if it is an absolute http(s) URL.

    Raises:
        ConfigError: If the URL has no http/https scheme or no host.
    """
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError as exc:
        raise ConfigError(f"Invalid metrics endpoint {url!r}: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ConfigError(f"Invalid metrics endpoint {url!r}: expected http(s)://host[:port]/path")
    return url
