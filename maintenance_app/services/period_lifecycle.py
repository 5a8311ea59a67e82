"""
Period Lifecycle Manager.

Creation (with seed assignments), date edits, manual finalization, listing,
deletion, and the expiry sweep.

Active-flag rule:
    is_active = now <= end_at          (a future window is active)

It is derived at creation and on every date edit. The sweep only ever flips
expired periods to inactive; a date edit is the only way back.
"""

import logging
import math

from maintenance_app.core.exceptions import (
    NotFoundError,
    PeriodHasCompletionsError,
    ValidationError,
)
from maintenance_app.models import db
from maintenance_app.models.completion import CompletionRecord
from maintenance_app.models.period import (
    DEFAULT_PERIOD_NAME,
    MaintenancePeriod,
    derive_active,
)
from maintenance_app.services import assignment_ledger, identity_resolver, period_locks
from maintenance_app.services.period_locks import period_guard
from maintenance_app.utils.helpers import as_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)

MAX_PER_PAGE = 100


def _parse_window(start_at, end_at) -> tuple:
    """Parse and order-check a date window. Raises ValidationError."""
    try:
        start = parse_datetime(start_at)
        end = parse_datetime(end_at)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if start is None or end is None:
        raise ValidationError("start_at and end_at are required")
    if end <= start:
        raise ValidationError(
            "end_at must be after start_at",
            details={"start_at": start.isoformat(), "end_at": end.isoformat()},
        )
    return start, end


def _get_or_404(period_id: int) -> MaintenancePeriod:
    period = db.session.get(MaintenancePeriod, period_id)
    if period is None:
        raise NotFoundError(resource="MaintenancePeriod", resource_id=period_id)
    return period


# ═══════════════════════════════════════════════════════════════════════════
#  CREATE / EDIT
# ═══════════════════════════════════════════════════════════════════════════

def create_period(name, coordinator_id, start_at, end_at, description=None,
                  seed_assignments=(), policy_id=None, specialty_id=None):
    """Create a period and its seed assignments in one transaction.

    Seeds use the same shape as ``assignment_ledger.prepare_specs``; any
    invalid seed aborts the whole creation.
    """
    if coordinator_id is None:
        raise ValidationError("coordinator_id is required")
    start, end = _parse_window(start_at, end_at)
    identity_resolver.resolve_coordinator(coordinator_id)

    seeds = list(seed_assignments or [])
    assign_to_all = False
    pool = ()
    if isinstance(seed_assignments, dict):
        seeds = seed_assignments.get("devices") or []
        assign_to_all = bool(seed_assignments.get("assign_to_all"))
        pool = seed_assignments.get("collaborator_ids") or ()
    prepared = assignment_ledger.prepare_specs(policy_id, seeds, assign_to_all, pool)

    period = MaintenancePeriod(
        name=(name or "").strip() or DEFAULT_PERIOD_NAME,
        coordinator_id=coordinator_id,
        policy_id=policy_id,
        specialty_id=specialty_id,
        start_at=start,
        end_at=end,
        is_active=derive_active(end),
        description=description or "",
    )
    try:
        db.session.add(period)
        assignment_ledger.apply_specs(period, prepared)
        period_locks.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Period created: %s (%d seed assignment(s), active=%s)",
                period.name, len(prepared), period.is_active, extra={"period_id": period.id})
    return period.to_dict()


def update_dates(period_id: int, start_at, end_at):
    """Replace the window and re-derive ``is_active`` atomically."""
    start, end = _parse_window(start_at, end_at)
    with period_guard(period_id) as period:
        period.start_at = start
        period.end_at = end
        period.is_active = derive_active(end)
        period.updated_at = utcnow()
    logger.info("Period dates updated (active=%s)", period.is_active, extra={"period_id": period_id})
    return period.to_dict()


def update_period(period_id: int, data: dict):
    """Edit name / description, and dates when either is supplied."""
    with period_guard(period_id) as period:
        if "name" in data:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("name cannot be empty")
            period.name = name
        if "description" in data:
            period.description = data.get("description") or ""
        if "start_at" in data or "end_at" in data:
            start, end = _parse_window(
                data.get("start_at", period.start_at),
                data.get("end_at", period.end_at),
            )
            period.start_at = start
            period.end_at = end
            period.is_active = derive_active(end)
        period.updated_at = utcnow()
    logger.info("Period updated", extra={"period_id": period_id})
    return period.to_dict()


def finalize(period_id: int):
    """Manual early close. Only a later date edit can reactivate the period."""
    with period_guard(period_id) as period:
        period.is_active = False
        period.updated_at = utcnow()
    logger.info("Period finalized", extra={"period_id": period_id})
    return period.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
#  SWEEP / READ
# ═══════════════════════════════════════════════════════════════════════════

def sweep_expired(now=None) -> int:
    """Deactivate every active period whose end has passed. Returns the count.

    Idempotent; inactive periods are never touched.
    """
    now = as_utc(now) or utcnow()
    candidates = [
        pid for pid, end_at in
        db.session.query(MaintenancePeriod.id, MaintenancePeriod.end_at)
        .filter(MaintenancePeriod.is_active.is_(True))
        .all()
        if not derive_active(end_at, now)
    ]
    deactivated = 0
    for period_id in candidates:
        with period_guard(period_id) as period:
            # Re-check under the lock; a concurrent date edit may have won.
            if period.is_active and not derive_active(period.end_at, now):
                period.is_active = False
                period.updated_at = utcnow()
                deactivated += 1
    if deactivated:
        logger.info("Expiry sweep deactivated %d period(s)", deactivated)
    return deactivated


def get_period(period_id: int):
    return _get_or_404(period_id).to_dict()


def list_periods(coordinator_id=None, policy_id=None, active=None,
                 start_from=None, start_to=None, page=1, per_page=10):
    """Paginated period list. Runs the expiry sweep first."""
    sweep_expired()

    try:
        start_from = parse_datetime(start_from)
        start_to = parse_datetime(start_to)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    page = max(int(page or 1), 1)
    per_page = min(max(int(per_page or 10), 1), MAX_PER_PAGE)

    q = MaintenancePeriod.query
    if coordinator_id is not None:
        q = q.filter(MaintenancePeriod.coordinator_id == coordinator_id)
    if policy_id is not None:
        q = q.filter(MaintenancePeriod.policy_id == policy_id)
    if active is not None:
        q = q.filter(MaintenancePeriod.is_active.is_(bool(active)))
    if start_from is not None:
        q = q.filter(MaintenancePeriod.start_at >= start_from)
    if start_to is not None:
        q = q.filter(MaintenancePeriod.start_at <= start_to)

    total = q.count()
    items = (
        q.order_by(MaintenancePeriod.start_at.desc(), MaintenancePeriod.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [p.to_dict(include_assignments=False) for p in items],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": math.ceil(total / per_page) if total else 0,
        },
    }


def active_window_status(now=None) -> dict:
    """Whether any active period's window covers ``now``.

    Collaborators may only upload reports while such a window is open.
    """
    now = as_utc(now) or utcnow()
    sweep_expired(now)
    open_periods = [
        p for p in MaintenancePeriod.query.filter(MaintenancePeriod.is_active.is_(True)).all()
        if as_utc(p.start_at) <= now <= as_utc(p.end_at)
    ]
    return {
        "is_open": bool(open_periods),
        "checked_at": now.isoformat(),
        "periods": [p.summary() for p in open_periods],
    }


# ═══════════════════════════════════════════════════════════════════════════
#  DELETE
# ═══════════════════════════════════════════════════════════════════════════

def _attached_records(period: MaintenancePeriod) -> list[CompletionRecord]:
    linked_ids = {a.completion_record_id for a in period.assignments if a.completion_record_id}
    q = CompletionRecord.query.filter(
        db.or_(
            CompletionRecord.period_id == period.id,
            CompletionRecord.id.in_(linked_ids) if linked_ids else db.false(),
        )
    )
    return q.all()


def delete_period(period_id: int, force: bool = False) -> dict:
    """Delete a period.

    Without ``force`` a period with attached completion records is refused
    with PeriodHasCompletionsError carrying the blocking count. With
    ``force`` those records are deleted first.
    """
    with period_guard(period_id) as period:
        records = _attached_records(period)
        if records and not force:
            logger.warning("Refused to delete period with %d record(s)", len(records),
                           extra={"period_id": period_id})
            raise PeriodHasCompletionsError(period_id, len(records))
        for assignment in period.assignments:
            assignment.completion_record_id = None
        for record in records:
            db.session.delete(record)
        db.session.delete(period)
    period_locks.forget(period_id)
    logger.info("Period deleted (force=%s, records_deleted=%d)", force, len(records),
                extra={"period_id": period_id})
    return {"deleted": True, "period_id": period_id, "records_deleted": len(records)}
