"""
Assignment Ledger — who has to do what inside a period.

Owns the per-period assignment collection:
    - individual assignments, keyed by (catalog_item_id, collaborator_id)
    - pooled assignments, keyed by catalog_item_id (one row for the whole pool)

Every mutation runs under ``period_guard`` and refuses to touch an inactive
period. Read operations return snapshots across all active periods and
tolerate dangling catalog references; ``repair_broken_references`` is the
compensating sweep that removes them.
"""

import logging
from collections import defaultdict

from maintenance_app.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from maintenance_app.models import db
from maintenance_app.models.period import (
    Assignment,
    IndividualAssignment,
    MaintenancePeriod,
    PooledAssignment,
    derive_active,
)
from maintenance_app.services import catalog_resolver, identity_resolver
from maintenance_app.services.period_locks import period_guard
from maintenance_app.utils.helpers import parse_id_list, utcnow

logger = logging.getLogger(__name__)


# ── Guards ───────────────────────────────────────────────────────────────────

def ensure_open(period: MaintenancePeriod) -> None:
    """Raise StateError unless the period accepts new work."""
    if not period.is_active or not derive_active(period.end_at):
        logger.warning("Rejected mutation of inactive period", extra={"period_id": period.id})
        raise StateError(f"Period {period.id} is not active", current="inactive")


def _coerce_id(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", details={field: value})
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer", details={field: value}) from exc


# ── Spec preparation (shared with period creation seeds) ─────────────────────

def prepare_specs(policy_id, specs, assign_to_all=False, collaborator_ids=()) -> list[dict]:
    """Validate assignment specs without touching the session.

    Each spec is a dict with ``catalog_item_id`` and either ``collaborator_id``
    (individual) or ``eligible_collaborator_ids`` (pooled). A spec with
    neither becomes pooled over ``collaborator_ids`` when ``assign_to_all``
    is set. Raises on the first invalid spec; nothing is written.
    """
    if not isinstance(specs, (list, tuple)):
        raise ValidationError("devices must be a list")
    try:
        shared_pool = parse_id_list(collaborator_ids)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"collaborator_ids": collaborator_ids}) from exc

    prepared = []
    for index, spec in enumerate(specs):
        if not isinstance(spec, dict):
            raise ValidationError(f"devices[{index}] must be an object")
        if spec.get("catalog_item_id") is None:
            raise ValidationError(f"devices[{index}].catalog_item_id is required")
        catalog_item_id = _coerce_id(spec["catalog_item_id"], "catalog_item_id")
        notes = spec.get("notes") or ""

        if spec.get("collaborator_id") is not None:
            prepared.append(_prepare_individual(
                policy_id, catalog_item_id, _coerce_id(spec["collaborator_id"], "collaborator_id"), notes,
            ))
            continue

        eligible = spec.get("eligible_collaborator_ids")
        if eligible is None and assign_to_all:
            eligible = shared_pool
        if eligible is None:
            raise ValidationError(
                f"devices[{index}] needs collaborator_id, eligible_collaborator_ids or assign_to_all",
            )
        prepared.append(_prepare_pooled(policy_id, catalog_item_id, eligible, notes))
    return prepared


def _prepare_individual(policy_id, catalog_item_id: int, collaborator_id: int, notes="") -> dict:
    catalog_resolver.resolve(catalog_item_id)
    identity_resolver.resolve_collaborator(collaborator_id)
    if not identity_resolver.is_policy_member(collaborator_id, policy_id):
        raise ValidationError(
            f"Collaborator {collaborator_id} does not belong to policy {policy_id}",
            details={"collaborator_id": collaborator_id, "policy_id": policy_id},
        )
    return {
        "kind": "individual",
        "catalog_item_id": catalog_item_id,
        "collaborator_id": collaborator_id,
        "notes": notes,
    }


def _prepare_pooled(policy_id, catalog_item_id: int, eligible_ids, notes="") -> dict:
    try:
        eligible = parse_id_list(eligible_ids)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"eligible_collaborator_ids": eligible_ids}) from exc
    if not eligible:
        raise ValidationError("A pooled assignment needs at least one eligible collaborator")
    catalog_resolver.resolve(catalog_item_id)
    members = identity_resolver.filter_policy_members(eligible, policy_id)
    if not members:
        raise ValidationError(
            "None of the eligible collaborators belong to the period's policy",
            details={"eligible_collaborator_ids": eligible, "policy_id": policy_id},
        )
    dropped = [cid for cid in eligible if cid not in members]
    if dropped:
        logger.info("Dropped %d ineligible collaborator(s) from pool for item %s",
                    len(dropped), catalog_item_id, extra={"catalog_item_id": catalog_item_id})
    return {
        "kind": "pooled",
        "catalog_item_id": catalog_item_id,
        "eligible_collaborator_ids": members,
        "notes": notes,
    }


def apply_specs(period: MaintenancePeriod, prepared: list[dict]) -> list[Assignment]:
    """Append prepared specs to the period, enforcing per-period uniqueness."""
    created = []
    for spec in prepared:
        if spec["kind"] == "individual":
            if period.find_individual(spec["catalog_item_id"], spec["collaborator_id"]):
                raise ConflictError(
                    "Assignment", "catalog_item_id/collaborator_id",
                    f"{spec['catalog_item_id']}/{spec['collaborator_id']}",
                )
            assignment = IndividualAssignment(
                catalog_item_id=spec["catalog_item_id"],
                collaborator_id=spec["collaborator_id"],
                notes=spec["notes"],
            )
        else:
            if period.find_pooled(spec["catalog_item_id"]):
                raise ConflictError("PooledAssignment", "catalog_item_id", str(spec["catalog_item_id"]))
            assignment = PooledAssignment(
                catalog_item_id=spec["catalog_item_id"],
                eligible_collaborator_ids=spec["eligible_collaborator_ids"],
                notes=spec["notes"],
            )
        period.assignments.append(assignment)
        created.append(assignment)
    return created


# ── Mutations ────────────────────────────────────────────────────────────────

def assign_individual(period_id: int, catalog_item_id: int, collaborator_id: int, notes: str = ""):
    with period_guard(period_id) as period:
        ensure_open(period)
        prepared = _prepare_individual(period.policy_id, catalog_item_id, collaborator_id, notes)
        (assignment,) = apply_specs(period, [prepared])
        period.updated_at = utcnow()
    logger.info("Assigned item %s to collaborator %s", catalog_item_id, collaborator_id,
                extra={"period_id": period_id, "collaborator_id": collaborator_id})
    return assignment.to_dict()


def assign_pooled(period_id: int, catalog_item_id: int, eligible_collaborator_ids, notes: str = ""):
    with period_guard(period_id) as period:
        ensure_open(period)
        prepared = _prepare_pooled(period.policy_id, catalog_item_id, eligible_collaborator_ids, notes)
        (assignment,) = apply_specs(period, [prepared])
        period.updated_at = utcnow()
    logger.info("Assigned item %s to pool of %d", catalog_item_id,
                len(assignment.eligible_collaborator_ids), extra={"period_id": period_id})
    return assignment.to_dict()


def assign_devices(period_id: int, specs, assign_to_all=False, collaborator_ids=()):
    """Batch assignment: all specs are validated, then applied in one transaction."""
    with period_guard(period_id) as period:
        ensure_open(period)
        prepared = prepare_specs(period.policy_id, specs, assign_to_all, collaborator_ids)
        created = apply_specs(period, prepared)
        period.updated_at = utcnow()
    logger.info("Assigned %d device(s)", len(created), extra={"period_id": period_id})
    return period.to_dict()


def reassign_owner(period_id: int, catalog_item_id: int, old_collaborator_id: int,
                   new_collaborator_id: int, notes=None):
    """Move an individual assignment to another collaborator."""
    with period_guard(period_id) as period:
        assignment = period.find_individual(catalog_item_id, old_collaborator_id)
        if assignment is None:
            raise NotFoundError(
                resource="Assignment",
                message=f"No individual assignment for item {catalog_item_id} "
                        f"and collaborator {old_collaborator_id}",
            )
        if identity_resolver.find_collaborator(new_collaborator_id) is None:
            raise ValidationError(
                f"Collaborator {new_collaborator_id} does not exist",
                details={"new_collaborator_id": new_collaborator_id},
            )
        if not identity_resolver.is_policy_member(new_collaborator_id, period.policy_id):
            raise ValidationError(
                f"Collaborator {new_collaborator_id} does not belong to policy {period.policy_id}",
                details={"new_collaborator_id": new_collaborator_id},
            )
        if new_collaborator_id != old_collaborator_id:
            if period.find_individual(catalog_item_id, new_collaborator_id):
                raise ConflictError(
                    "Assignment", "catalog_item_id/collaborator_id",
                    f"{catalog_item_id}/{new_collaborator_id}",
                )
            assignment.collaborator_id = new_collaborator_id
        if notes is not None:
            assignment.notes = notes
        period.updated_at = utcnow()
    logger.info("Reassigned item %s: %s → %s", catalog_item_id, old_collaborator_id,
                new_collaborator_id, extra={"period_id": period_id})
    return period.to_dict()


# ── Collaborator views ───────────────────────────────────────────────────────

def _active_assignments_for(collaborator_id: int):
    rows = (
        db.session.query(Assignment, MaintenancePeriod)
        .join(MaintenancePeriod, Assignment.period_id == MaintenancePeriod.id)
        .filter(MaintenancePeriod.is_active.is_(True))
        .filter(db.or_(
            Assignment.collaborator_id == collaborator_id,
            Assignment.kind == "pooled",
        ))
        .order_by(MaintenancePeriod.id, Assignment.id)
        .all()
    )
    return [
        (assignment, period) for assignment, period in rows
        if derive_active(period.end_at) and assignment.matches(collaborator_id)
    ]


def _present(pairs) -> list[dict]:
    catalog = catalog_resolver.describe_many({a.catalog_item_id for a, _ in pairs})
    items = []
    for assignment, period in pairs:
        item = assignment.to_dict()
        item["period"] = period.summary()
        item["catalog_item"] = catalog.get(assignment.catalog_item_id)
        items.append(item)
    return items


def list_pending_for_collaborator(collaborator_id: int) -> list[dict]:
    """Open work (pending / in_progress) across all active periods."""
    pairs = [(a, p) for a, p in _active_assignments_for(collaborator_id) if a.is_open]
    return _present(pairs)


def list_all_for_collaborator(collaborator_id: int) -> list[dict]:
    """Same matching rule as the pending list, completed work included."""
    return _present(_active_assignments_for(collaborator_id))


# ── Referential repair ───────────────────────────────────────────────────────

def repair_broken_references() -> dict:
    """Remove assignments whose catalog item no longer exists.

    Idempotent: with nothing broken it touches nothing. Completion records
    are left alone; they belong to the reporting side.
    """
    rows = db.session.query(Assignment.id, Assignment.period_id, Assignment.catalog_item_id).all()
    existing = catalog_resolver.existing_ids({r.catalog_item_id for r in rows})
    broken_by_period: dict[int, set[int]] = defaultdict(set)
    for r in rows:
        if r.catalog_item_id not in existing:
            broken_by_period[r.period_id].add(r.id)

    removed = 0
    for period_id, assignment_ids in broken_by_period.items():
        with period_guard(period_id) as period:
            doomed = [a for a in period.assignments if a.id in assignment_ids]
            for assignment in doomed:
                period.assignments.remove(assignment)
            period.updated_at = utcnow()
        removed += len(doomed)
        logger.info("Removed %d dangling assignment(s)", len(doomed), extra={"period_id": period_id})

    return {"periods_touched": len(broken_by_period), "records_removed": removed}
