"""SQLModel engine and session management.

This module provides:
- Database engine creation with connection pooling
- Session factory for dependency injection
- atomic() unit-of-work wrapper

PostgreSQL is the primary database. SQLite is only used by the test suite.
"""

from contextlib import contextmanager
from typing import Generator

from sqlmodel import Session, create_engine

from seatpool.config import DATABASE_URL

# Create engine with connection pooling
# pool_pre_ping ensures connections are valid before use
engine = create_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL debugging
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Get a database session.

    Usage:
        with get_session() as session:
            pool = session.get(ResourcePool, pool_id)
            session.add(pool)
            session.commit()

    Yields:
        SQLModel Session instance
    """
    with Session(engine) as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise


@contextmanager
def atomic(session: Session) -> Generator[Session, None, None]:
    """Run a unit of work that commits or rolls back as a whole.

    Usage:
        with atomic(session):
            seat.seat_status = SeatStatus.assigned
            pool.used_seats += 1

    Nothing written inside the block survives an exception.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def get_session_dependency() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions.

    Usage in FastAPI:
        @router.get("/pools/{pool_id}")
        def get_pool(pool_id: UUID, session: Session = Depends(get_session_dependency)):
            return session.get(ResourcePool, pool_id)
    """
    with Session(engine) as session:
        yield session
