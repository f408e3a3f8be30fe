"""Database models and session management."""

from screener.db.session import get_session, init_db, close_db

__all__ = ["get_session", "init_db", "close_db"]
