"""Transaction boundary helper for store writes."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def transaction(session: Session) -> Generator[Session]:
    """Commit on successful completion, roll back on any exception.

    Example:
        with session_maker() as session, transaction(session):
            session.merge(row)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
