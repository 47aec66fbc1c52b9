"""Database engine, sessions and the secure query layer."""

from evergreen.db.session import Base, SessionLocal, engine, get_db

__all__ = ["Base", "SessionLocal", "engine", "get_db"]
