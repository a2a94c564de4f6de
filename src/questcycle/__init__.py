"""questcycle - recurring player task lifecycle engine."""

__version__ = "0.1.0"
