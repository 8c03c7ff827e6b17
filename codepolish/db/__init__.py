"""Database package: declarative base, engine and session factory helpers."""

from codepolish.db.base import Base, create_all, create_engine, create_session_factory
from codepolish.db.redis import create_redis

__all__ = [
    "Base",
    "create_all",
    "create_engine",
    "create_redis",
    "create_session_factory",
]
