"""Database infrastructure for SQLModel + PostgreSQL.

This module provides the database engine, session management and
unit-of-work helpers.

Usage:
    from seatpool.db import get_session, engine

    with get_session() as session:
        pool = session.get(ResourcePool, pool_id)
"""

from seatpool.db.engine import atomic, engine, get_session

__all__ = [
    "engine",
    "get_session",
    "atomic",
]
