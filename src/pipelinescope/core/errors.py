"""Exception hierarchy for the collector and aggregation engine.

Transient upstream failures derive from UpstreamUnavailableError and are
recovered by the collector loop on its next tick. ConfigError is raised once
from a collector's start() and disables that collector only. OwnershipError
signals misuse of the aggregation store and is never recovered.
"""


class DashboardError(Exception):
    """Base class for all pipelinescope errors."""


class UpstreamUnavailableError(DashboardError):
    """An upstream source could not be read. Retry on the next tick."""


class ClusterUnavailableError(UpstreamUnavailableError):
    """The cluster API failed or timed out."""


class MetricsUnavailableError(UpstreamUnavailableError):
    """The metrics endpoint could not be scraped."""


class ConfigError(DashboardError):
    """Invalid static configuration for a collector."""


class OwnershipError(DashboardError):
    """A view kind was claimed or published by something other than its owner."""
