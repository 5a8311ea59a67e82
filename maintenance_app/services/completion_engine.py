"""
Completion Engine — assignment state machine.

    pending ──► in_progress ──► completed
       └────────────────────────────┘

Complete (one transaction, under the period lock):
    1. locate: the caller's individual row, else a pooled row listing the caller
    2. refuse if already completed or if the period is inactive
    3. attach an existing completion record or create one from the payload
       (collaborative payloads get a principal + contributors roster)
    4. stamp the row: completed_at, completed_by, record link
    5. pooled only: stamp every other open pooled sibling for the same item
       with the same timestamp, completer and record (no extra records)

First writer wins: a second caller takes the lock after the first commit and
sees ``completed``.
"""

import logging

from maintenance_app.core.exceptions import (
    AuthorizationError,
    NotFoundError,
    StateError,
    ValidationError,
)
from maintenance_app.models import db
from maintenance_app.models.completion import (
    EDITABLE_FIELDS,
    RECORD_STATUSES,
    RECORD_TRANSITIONS,
    CompletionParticipant,
    CompletionRecord,
    validate_participants,
)
from maintenance_app.models.period import Assignment, MaintenancePeriod, derive_active
from maintenance_app.services import identity_resolver
from maintenance_app.services.period_locks import period_guard
from maintenance_app.utils.helpers import parse_datetime, parse_id_list, utcnow

logger = logging.getLogger(__name__)

EVIDENCE_FIELDS = ("work_evidence", "device_evidence", "view_evidence", "manual_upload_reason")


# ── Matching ─────────────────────────────────────────────────────────────────

def locate(period: MaintenancePeriod, catalog_item_id: int, collaborator_id: int) -> Assignment:
    """Find the row ``collaborator_id`` may act on for ``catalog_item_id``.

    Individual ownership wins over pool eligibility. Among pooled rows an open
    one is preferred, so a completed sibling does not mask pending work.
    """
    individual = period.find_individual(catalog_item_id, collaborator_id)
    if individual is not None:
        return individual
    pooled = [a for a in period.pooled_siblings(catalog_item_id) if a.matches(collaborator_id)]
    pooled.sort(key=lambda a: (not a.is_open, a.id or 0))
    if pooled:
        return pooled[0]
    logger.warning("No assignment for item %s / collaborator %s", catalog_item_id, collaborator_id,
                   extra={"period_id": period.id, "collaborator_id": collaborator_id})
    raise NotFoundError(
        resource="Assignment",
        message="Assignment not found or collaborator not authorized",
    )


def _ensure_period_active(period: MaintenancePeriod) -> None:
    if not period.is_active or not derive_active(period.end_at):
        raise StateError(f"Period {period.id} is not active", current="inactive")


# ── Payload → roster ─────────────────────────────────────────────────────────

def build_roster(collaborator_id: int, payload: dict) -> list[dict]:
    """Completer first as principal, then the declared contributors.

    ``payload["collaborator_ids"]`` lists contributors; ``payload["participation"]``
    optionally carries ``[{"collaborator_id", "description"}]``.
    """
    try:
        declared = parse_id_list(payload.get("collaborator_ids") or [])
    except ValueError as exc:
        raise ValidationError(str(exc), details={"collaborator_ids": payload.get("collaborator_ids")}) from exc

    descriptions = {}
    for entry in payload.get("participation") or []:
        if not isinstance(entry, dict) or entry.get("collaborator_id") is None:
            raise ValidationError("participation entries need collaborator_id")
        try:
            cid = int(entry["collaborator_id"])
        except (TypeError, ValueError) as exc:
            raise ValidationError("participation collaborator_id must be an integer") from exc
        descriptions[cid] = entry.get("description")
        if cid not in declared and cid != collaborator_id:
            declared.append(cid)

    roster = [{
        "collaborator_id": collaborator_id,
        "role": "principal",
        "description": descriptions.get(collaborator_id),
    }]
    for cid in declared:
        if cid == collaborator_id:
            continue
        roster.append({"collaborator_id": cid, "role": "contributor", "description": descriptions.get(cid)})
    return roster


def _validate_roster(roster: list[dict]) -> None:
    problems = validate_participants(roster)
    unknown = [p["collaborator_id"] for p in roster
               if identity_resolver.find_collaborator(p["collaborator_id"]) is None]
    if unknown:
        problems.append(f"Unknown collaborator(s): {unknown}")
    if problems:
        raise ValidationError("Invalid collaborative completion", details={"participants": problems})


def _set_participants(record: CompletionRecord, roster: list[dict]) -> None:
    record.participants = [
        CompletionParticipant(
            collaborator_id=p["collaborator_id"],
            role=p["role"],
            description=p.get("description"),
        )
        for p in roster
    ]


# ── Record attach / create ───────────────────────────────────────────────────

def _attach_record(record_id, assignment: Assignment, collaborator_id: int, roster) -> CompletionRecord:
    record = db.session.get(CompletionRecord, record_id)
    if record is None:
        raise NotFoundError(resource="CompletionRecord", resource_id=record_id)
    if record.catalog_item_id != assignment.catalog_item_id:
        raise ValidationError(
            "Completion record is for a different catalog item",
            details={"record_item": record.catalog_item_id, "assignment_item": assignment.catalog_item_id},
        )
    allowed = {collaborator_id} | {p["collaborator_id"] for p in roster or []}
    if record.collaborator_id not in allowed:
        raise AuthorizationError(
            collaborator_id,
            f"Completion record {record_id} belongs to collaborator {record.collaborator_id}",
        )
    linked = (
        Assignment.query
        .filter(Assignment.completion_record_id == record.id, Assignment.id != assignment.id)
        .first()
    )
    if linked is not None:
        raise StateError(f"Completion record {record_id} is already linked to another assignment",
                         current="linked")
    return record


def _create_record(period: MaintenancePeriod, assignment: Assignment, collaborator_id: int,
                   payload: dict, completed_at) -> CompletionRecord:
    try:
        captured_at = parse_datetime(payload.get("captured_at")) or completed_at
    except ValueError as exc:
        raise ValidationError(str(exc), details={"captured_at": payload.get("captured_at")}) from exc
    record = CompletionRecord(
        catalog_item_id=assignment.catalog_item_id,
        collaborator_id=collaborator_id,
        specialty_id=payload.get("specialty_id") or period.specialty_id,
        period_id=period.id,
        captured_at=captured_at,
        note=payload.get("note") or "",
        status="completed",
        is_assigned=True,
        completed_at=completed_at,
        **{f: payload.get(f) for f in EVIDENCE_FIELDS},
    )
    db.session.add(record)
    return record


# ═══════════════════════════════════════════════════════════════════════════
#  COMPLETE
# ═══════════════════════════════════════════════════════════════════════════

def complete(period_id: int, catalog_item_id: int, collaborator_id: int, payload: dict | None = None):
    """Transition the caller's assignment to completed and link its record.

    Returns a completion summary: the assignment, the record, how many pooled
    siblings were stamped, and the period's refreshed counters.
    """
    payload = payload or {}
    with period_guard(period_id) as period:
        assignment = locate(period, catalog_item_id, collaborator_id)
        if not assignment.can_transition("completed"):
            logger.warning("Double completion refused for item %s", catalog_item_id,
                           extra={"period_id": period_id, "collaborator_id": collaborator_id})
            raise StateError(
                f"Assignment for item {catalog_item_id} is already completed",
                current=assignment.status,
            )
        _ensure_period_active(period)

        collaborative = bool(payload.get("is_collaborative"))
        roster = build_roster(collaborator_id, payload) if collaborative else None
        if roster is not None:
            _validate_roster(roster)

        now = utcnow()
        if payload.get("completion_record_id") is not None:
            record = _attach_record(payload["completion_record_id"], assignment, collaborator_id, roster)
            record.period_id = record.period_id or period.id
            record.is_assigned = True
            record.status = "completed"
            record.completed_at = record.completed_at or now
        else:
            record = _create_record(period, assignment, collaborator_id, payload, now)
        if roster is not None:
            record.is_collaborative = True
            _set_participants(record, roster)
        db.session.flush()

        contributor_ids = [p["collaborator_id"] for p in roster] if roster else []
        stamp = {
            "completed_at": now,
            "completed_by_id": collaborator_id,
            "completion_record_id": record.id,
            "is_collaborative": collaborative,
            "contributor_ids": contributor_ids,
        }
        assignment.mark_completed(**stamp)
        if payload.get("notes") is not None:
            assignment.notes = payload["notes"]

        fanned_out = 0
        if assignment.is_pooled:
            for sibling in period.pooled_siblings(catalog_item_id):
                if sibling is assignment or not sibling.is_open:
                    continue
                sibling.mark_completed(**stamp)
                fanned_out += 1

        period.updated_at = now
        summary = {
            "assignment": assignment.to_dict(),
            "completion_record": record.to_dict(),
            "fanned_out": fanned_out,
        }

    logger.info("Assignment completed: item %s by %s (record %s, fan-out %d)",
                catalog_item_id, collaborator_id, summary["completion_record"]["id"], fanned_out,
                extra={"period_id": period_id, "collaborator_id": collaborator_id,
                       "completion_record_id": summary["completion_record"]["id"]})
    summary["period"] = {
        "id": period.id,
        "total_devices": period.total_devices,
        "completed_devices": period.completed_devices,
        "completion_percentage": period.completion_percentage,
    }
    return summary


def record_progress(period_id: int, catalog_item_id: int, collaborator_id: int):
    """pending → in_progress. Idempotent once in progress."""
    with period_guard(period_id) as period:
        assignment = locate(period, catalog_item_id, collaborator_id)
        changed = assignment.status != "in_progress"
        if changed and not assignment.can_transition("in_progress"):
            raise StateError(
                f"Assignment for item {catalog_item_id} is already {assignment.status}",
                current=assignment.status,
            )
        _ensure_period_active(period)
        if changed:
            assignment.status = "in_progress"
            period.updated_at = utcnow()
    if changed:
        logger.info("Assignment in progress: item %s", catalog_item_id,
                    extra={"period_id": period_id, "collaborator_id": collaborator_id})
    return assignment.to_dict()


# ═══════════════════════════════════════════════════════════════════════════
#  COMPLETION RECORDS (read / correct)
# ═══════════════════════════════════════════════════════════════════════════

def get_completion_record(record_id: int):
    record = db.session.get(CompletionRecord, record_id)
    if record is None:
        raise NotFoundError(resource="CompletionRecord", resource_id=record_id)
    return record.to_dict()


def update_completion_record(record_id: int, data: dict):
    """Correct a record's metadata. Assignment state is not affected."""
    record = db.session.get(CompletionRecord, record_id)
    if record is None:
        raise NotFoundError(resource="CompletionRecord", resource_id=record_id)

    unknown = set(data) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError("Fields cannot be edited", details={"fields": sorted(unknown)})

    new_status = data.get("status")
    if new_status is not None and new_status != record.status:
        if new_status not in RECORD_STATUSES:
            raise ValidationError(f"Invalid status: {new_status}")
        if new_status not in RECORD_TRANSITIONS.get(record.status, []):
            raise StateError(
                f"Cannot transition record from {record.status} to {new_status}",
                current=record.status,
            )

    for field in EDITABLE_FIELDS:
        if field in data:
            setattr(record, field, data[field])
    if new_status == "completed" and record.completed_at is None:
        record.completed_at = utcnow()
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Completion record corrected", extra={"completion_record_id": record_id})
    return record.to_dict()
