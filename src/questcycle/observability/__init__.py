"""Observability helpers."""

from questcycle.observability.metrics import MetricsRegistry

__all__ = ["MetricsRegistry"]
