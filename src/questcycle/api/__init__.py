"""REST API."""

from questcycle.api.router import router

__all__ = ["router"]
