"""Explicit transaction boundaries with commit/rollback semantics."""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.orm import Session


@contextmanager
def transaction(session: Session) -> Generator[Session]:
    """Commit on successful completion, roll back on any exception.

    Example:
        with session_maker() as session, transaction(session):
            orders.insert(order)
            coupons.record_redemption("WELCOME", "user-1", order.order_id)
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise

