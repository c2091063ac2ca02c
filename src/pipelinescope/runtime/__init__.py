"""Collector scheduling and lifecycle."""
