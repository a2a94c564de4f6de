"""Database layer."""

from questcycle.db.base import Base, create_engine, create_session_factory, close_db, init_db

__all__ = ["Base", "close_db", "create_engine", "create_session_factory", "init_db"]
