# Overview: Service-layer operations for concurrency; unit-of-work and snapshot boundaries.

from __future__ import annotations

from contextlib import contextmanager

from flask import current_app

from ..extensions import db
from ..errors import PortalError, ACCESS_ERRORS
from . import security_service


_DEPTH_KEY = "portal_atomic_depth"


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _should_record(exc: BaseException, principal) -> bool:
    if isinstance(exc, ACCESS_ERRORS):
        return True
    # Failed system-triggered transitions (overdue sweep, carrier webhook)
    # are logged as failed attempts; the scheduler owns the retry.
    return isinstance(exc, PortalError) and getattr(principal, "is_system", False)


@contextmanager
def atomic(principal=None, *, resource: str | None = None, action: str | None = None, entity_id: int | None = None):
    """
    One unit of work: authorize -> guard -> mutate -> audit insert -> commit.

    Only the outermost block commits. On any exception the whole unit is
    rolled back, then access denials and failed system-triggered attempts
    are written to the security log in a fresh transaction and the original
    exception is re-raised.
    """
    session = db.session()
    depth = session.info.get(_DEPTH_KEY, 0)
    session.info[_DEPTH_KEY] = depth + 1
    try:
        yield session
        if depth == 0:
            session.commit()
    except Exception as exc:
        if depth == 0:
            session.rollback()
            if _should_record(exc, principal):
                _record_failure(exc, principal, resource=resource, action=action, entity_id=entity_id)
        raise
    finally:
        session.info[_DEPTH_KEY] = depth


def _record_failure(exc, principal, **context) -> None:
    try:
        security_service.record_failed_attempt(exc, principal, **context)
        db.session.commit()
        exc.recorded = True
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to record security event for %s", type(exc).__name__)


@contextmanager
def snapshot():
    """
    Read-only consistent snapshot for multi-query scans (action queue).

    Uses REPEATABLE READ on engines that support it. SQLite serializes
    writers, so a single read transaction is already consistent there.
    The transaction is always rolled back: nothing read here is written.
    """
    session = db.session()
    owns_transaction = not session.in_transaction()
    if owns_transaction and session.get_bind().dialect.name != "sqlite":
        session.connection(execution_options={"isolation_level": "REPEATABLE READ"})
    try:
        yield session
    finally:
        if owns_transaction:
            session.rollback()
