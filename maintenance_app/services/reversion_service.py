"""
Reversion & Deletion Service.

Removes assignments and undoes their completion bookkeeping:

    delete_assignment          individual row; deletes its linked record
    delete_pooled_assignment   pooled row(s) for an item; deletes the records
                               of the completer and every contributor
    revert_to_pending          a record vanished elsewhere: reset the rows
                               that pointed at it
    delete_completion_record   delete a record and revert its rows together

Both deletion paths go through ``_remove_assignments``. Any assignment left
in place whose record is deleted here is reset to pending in the same
transaction, so no row ever points at a record that no longer exists.
"""

import logging

from maintenance_app.core.exceptions import NotFoundError
from maintenance_app.models import db
from maintenance_app.models.completion import CompletionRecord
from maintenance_app.models.period import Assignment, MaintenancePeriod
from maintenance_app.services.period_locks import period_guard, periods_guard
from maintenance_app.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def _records_to_delete(period: MaintenancePeriod, assignment: Assignment) -> set[int]:
    """Completion records that die with ``assignment``."""
    if assignment.status != "completed":
        return set()
    ids = {assignment.completion_record_id} if assignment.completion_record_id else set()
    if assignment.is_pooled:
        participants = set(assignment.contributor_ids or [])
        if assignment.completed_by_id is not None:
            participants.add(assignment.completed_by_id)
        if participants:
            rows = (
                db.session.query(CompletionRecord.id)
                .filter(
                    CompletionRecord.period_id == period.id,
                    CompletionRecord.catalog_item_id == assignment.catalog_item_id,
                    CompletionRecord.collaborator_id.in_(participants),
                )
                .all()
            )
            ids.update(r[0] for r in rows)
    return ids


def _delete_records(record_ids: set[int], survivors) -> int:
    """Delete records, resetting any surviving assignment that links to one."""
    if not record_ids:
        return 0
    for assignment in survivors:
        if assignment.completion_record_id in record_ids:
            assignment.reset_to_pending()
    records = CompletionRecord.query.filter(CompletionRecord.id.in_(record_ids)).all()
    for record in records:
        db.session.delete(record)
    return len(records)


def _remove_assignments(period: MaintenancePeriod, doomed: list[Assignment]) -> dict:
    """Remove ``doomed`` from the period, cascading to their records."""
    record_ids: set[int] = set()
    for assignment in doomed:
        record_ids |= _records_to_delete(period, assignment)

    for assignment in doomed:
        period.assignments.remove(assignment)
    deleted = _delete_records(record_ids, period.assignments)
    period.updated_at = utcnow()
    return {"assignments_removed": len(doomed), "records_deleted": deleted}


def delete_assignment(period_id: int, catalog_item_id: int, collaborator_id: int) -> dict:
    """Delete an individual assignment and, if completed, its record."""
    with period_guard(period_id) as period:
        assignment = period.find_individual(catalog_item_id, collaborator_id)
        if assignment is None:
            raise NotFoundError(
                resource="Assignment",
                message=f"No individual assignment for item {catalog_item_id} "
                        f"and collaborator {collaborator_id}",
            )
        result = _remove_assignments(period, [assignment])
    logger.info("Individual assignment deleted: item %s (%d record(s) deleted)",
                catalog_item_id, result["records_deleted"],
                extra={"period_id": period_id, "collaborator_id": collaborator_id})
    return result


def delete_pooled_assignment(period_id: int, catalog_item_id: int) -> dict:
    """Delete the pooled assignment(s) for an item and their contributors' records."""
    with period_guard(period_id) as period:
        doomed = period.pooled_siblings(catalog_item_id)
        if not doomed:
            raise NotFoundError(
                resource="PooledAssignment",
                message=f"No pooled assignment for item {catalog_item_id}",
            )
        result = _remove_assignments(period, doomed)
    logger.info("Pooled assignment deleted: item %s (%d record(s) deleted)",
                catalog_item_id, result["records_deleted"], extra={"period_id": period_id})
    return result


def _referencing_period_ids(record_id: int) -> set[int]:
    rows = (
        db.session.query(Assignment.period_id)
        .filter(Assignment.completion_record_id == record_id)
        .distinct()
        .all()
    )
    return {r[0] for r in rows}


def revert_to_pending(completion_record_id: int) -> int:
    """Reset every assignment that references the record. Returns the count."""
    period_ids = _referencing_period_ids(completion_record_id)
    if not period_ids:
        return 0
    reverted = 0
    with periods_guard(period_ids) as periods:
        for period in periods.values():
            for assignment in period.assignments:
                if assignment.completion_record_id == completion_record_id:
                    assignment.reset_to_pending()
                    reverted += 1
            period.updated_at = utcnow()
    logger.info("Reverted %d assignment(s) to pending", reverted,
                extra={"completion_record_id": completion_record_id})
    return reverted


def delete_completion_record(completion_record_id: int) -> dict:
    """Delete a standalone record and revert the assignments that used it."""
    if db.session.get(CompletionRecord, completion_record_id) is None:
        raise NotFoundError(resource="CompletionRecord", resource_id=completion_record_id)

    period_ids = _referencing_period_ids(completion_record_id)
    reverted = 0
    with periods_guard(period_ids) as periods:
        for period in periods.values():
            for assignment in period.assignments:
                if assignment.completion_record_id == completion_record_id:
                    assignment.reset_to_pending()
                    reverted += 1
            period.updated_at = utcnow()
        record = db.session.get(CompletionRecord, completion_record_id)
        if record is None:
            raise NotFoundError(resource="CompletionRecord", resource_id=completion_record_id)
        db.session.delete(record)
    logger.info("Completion record deleted, %d assignment(s) reverted", reverted,
                extra={"completion_record_id": completion_record_id})
    return {"deleted": True, "completion_record_id": completion_record_id, "assignments_reverted": reverted}
