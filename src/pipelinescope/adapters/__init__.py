"""Adapters connecting the core to the cluster, HTTP, storage and web frameworks."""
