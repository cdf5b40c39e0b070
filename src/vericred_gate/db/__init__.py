"""Database configuration and utilities."""

from .session import Base, SessionLocal, build_engine, create_tables, get_db
from .time import utcnow

__all__ = ["Base", "SessionLocal", "build_engine", "create_tables", "get_db", "utcnow"]
