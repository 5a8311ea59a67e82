"""
Per-period serialization.

Every mutation of a period (its dates, its assignments, completions into it)
runs inside ``period_guard(period_id)``:

    1. an in-process ``threading.Lock`` keyed by period id, so two requests
       handled by the same worker never interleave on one period while
       different periods proceed in parallel;
    2. ``SELECT ... FOR UPDATE`` on the period row, which serializes writers
       across processes on PostgreSQL (SQLite ignores it);
    3. the period's ``version`` column (SQLAlchemy ``version_id_col``) as the
       last line: a stale writer fails at flush with StaleDataError, which
       is surfaced as StateError.

On exit the session is committed; on any exception it is rolled back, so a
failed operation leaves nothing half-written.
"""

import logging
import threading
from contextlib import ExitStack, contextmanager

from sqlalchemy.orm.exc import StaleDataError

from maintenance_app.core.exceptions import NotFoundError, StateError
from maintenance_app.models import db
from maintenance_app.models.period import MaintenancePeriod

logger = logging.getLogger(__name__)

_locks: dict[int, threading.Lock] = {}
_registry_lock = threading.Lock()


def lock_for(period_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _locks.get(period_id)
        if lock is None:
            lock = _locks[period_id] = threading.Lock()
        return lock


def forget(period_id: int) -> None:
    """Drop the lock of a deleted period."""
    with _registry_lock:
        _locks.pop(period_id, None)


def load_for_update(period_id: int) -> MaintenancePeriod:
    period = (
        MaintenancePeriod.query
        .filter_by(id=period_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if period is None:
        raise NotFoundError(resource="MaintenancePeriod", resource_id=period_id)
    return period


def commit() -> None:
    """Commit, translating an optimistic-version clash into StateError."""
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Stale period write rejected: %s", exc)
        raise StateError(
            "Period was modified concurrently; reload and retry",
            current="stale",
        ) from exc


@contextmanager
def period_guard(period_id: int):
    """Serialize a read-check-write sequence on one period.

    Yields the freshly loaded, row-locked period. Commits on success, rolls
    back on any exception (which is re-raised).
    """
    lock = lock_for(period_id)
    with lock:
        try:
            period = load_for_update(period_id)
            yield period
            commit()
        except Exception:
            db.session.rollback()
            raise


@contextmanager
def periods_guard(period_ids):
    """Serialize on several periods at once, in one transaction.

    Locks are taken in ascending id order so two multi-period writers cannot
    deadlock. Yields ``{period_id: period}`` for the periods that exist.
    """
    ordered = sorted({int(pid) for pid in period_ids})
    with ExitStack() as stack:
        for period_id in ordered:
            stack.enter_context(lock_for(period_id))
        try:
            periods = {}
            for period_id in ordered:
                period = (
                    MaintenancePeriod.query
                    .filter_by(id=period_id)
                    .populate_existing()
                    .with_for_update()
                    .first()
                )
                if period is not None:
                    periods[period_id] = period
            yield periods
            commit()
        except Exception:
            db.session.rollback()
            raise
