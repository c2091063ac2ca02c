"""Cluster state readers implementing ClusterStateReaderPort."""

from pipelinescope.adapters.cluster.in_memory import InMemoryClusterReader
from pipelinescope.adapters.cluster.kubernetes import KubernetesClusterReader

__all__ = [
    "InMemoryClusterReader",
    "KubernetesClusterReader",
]
