"""Database layer - engine, base classes and immutability listeners."""

from program_kernel.db.base import Base, TrackedBase
from program_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "Base",
    "TrackedBase",
    "create_tables",
    "get_engine",
    "get_session",
    "session_scope",
]
