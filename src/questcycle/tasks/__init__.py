"""Background tasks."""

from questcycle.tasks.sweep import BackgroundLoops

__all__ = ["BackgroundLoops"]
