"""
Maintenance Period Platform
Completion record models — the evidentiary artifact of a performed task.

Models:
    - CompletionRecord: one report for one catalog item, produced by a principal
      collaborator (optionally together with contributors)
    - CompletionParticipant: contributor roster of a collaborative record

A record is referenced by assignments (``Assignment.completion_record_id``)
but never owned by them. ``period_id`` is an optional back-reference to the
period the record originated from.
"""

from datetime import datetime, timezone

from maintenance_app.models import db
from maintenance_app.utils.helpers import isoformat


# ── Constants ────────────────────────────────────────────────────────────────

RECORD_STATUSES = {"pending", "in_progress", "completed", "rejected"}
PARTICIPANT_ROLES = {"principal", "contributor"}

# Standalone workflow; deliberately decoupled from assignment state.
RECORD_TRANSITIONS = {
    "pending":     ["in_progress", "completed", "rejected"],
    "in_progress": ["completed", "rejected"],
    "completed":   ["rejected"],
    "rejected":    ["pending"],
}

# Fields a correction may touch (PATCH /completion-records/<id>)
EDITABLE_FIELDS = {
    "note", "status", "work_evidence", "device_evidence",
    "view_evidence", "manual_upload_reason", "specialty_id",
}


def validate_participants(participants) -> list[str]:
    """Return a list of problems with a collaborative roster (empty = valid).

    ``participants`` is an iterable of dicts with ``collaborator_id`` and
    ``role`` keys.
    """
    participants = list(participants or [])
    problems = []
    if not participants:
        problems.append("Collaborative completion requires at least one participant")
        return problems
    principals = [p for p in participants if p.get("role") == "principal"]
    if len(principals) != 1:
        problems.append(
            f"Collaborative completion requires exactly one principal (got {len(principals)})"
        )
    for p in participants:
        if p.get("role") not in PARTICIPANT_ROLES:
            problems.append(f"Invalid participant role: {p.get('role')!r}")
    ids = [p.get("collaborator_id") for p in participants]
    if len(ids) != len(set(ids)):
        problems.append("Duplicate collaborator in participants")
    return problems


class CompletionRecord(db.Model):
    """Device report: evidence that a catalog item was inspected or serviced."""

    __tablename__ = "completion_records"
    __table_args__ = (
        db.Index("ix_record_period_collaborator", "period_id", "collaborator_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    catalog_item_id = db.Column(db.Integer, nullable=False, index=True)
    collaborator_id = db.Column(
        db.Integer, db.ForeignKey("collaborators.id", ondelete="SET NULL"),
        nullable=True, index=True, comment="Principal collaborator",
    )
    specialty_id = db.Column(db.Integer, nullable=True)
    period_id = db.Column(
        db.Integer, db.ForeignKey("maintenance_periods.id", ondelete="SET NULL"),
        nullable=True, index=True, comment="Originating period, if any",
    )

    captured_at = db.Column(db.DateTime(timezone=True),
                            default=lambda: datetime.now(timezone.utc))
    work_evidence = db.Column(db.String(500), nullable=True,
                              comment="Reference to work evidence (photo/file id)")
    device_evidence = db.Column(db.String(500), nullable=True)
    view_evidence = db.Column(db.String(500), nullable=True,
                              comment="Site/view evidence reference")
    manual_upload_reason = db.Column(db.Text, nullable=True)
    note = db.Column(db.Text, default="")

    status = db.Column(db.String(20), default="completed", nullable=False)
    is_assigned = db.Column(db.Boolean, default=False, nullable=False,
                            comment="Created from an assignment")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_collaborative = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    participants = db.relationship(
        "CompletionParticipant",
        backref="record",
        cascade="all, delete-orphan",
        order_by="CompletionParticipant.id",
        lazy="select",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "catalog_item_id": self.catalog_item_id,
            "collaborator_id": self.collaborator_id,
            "specialty_id": self.specialty_id,
            "period_id": self.period_id,
            "captured_at": isoformat(self.captured_at),
            "work_evidence": self.work_evidence,
            "device_evidence": self.device_evidence,
            "view_evidence": self.view_evidence,
            "manual_upload_reason": self.manual_upload_reason,
            "note": self.note or "",
            "status": self.status,
            "is_assigned": self.is_assigned,
            "completed_at": isoformat(self.completed_at),
            "is_collaborative": self.is_collaborative,
            "participants": [p.to_dict() for p in self.participants],
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<CompletionRecord {self.id}: item={self.catalog_item_id} [{self.status}]>"


class CompletionParticipant(db.Model):
    """One collaborator's part in a collaborative completion."""

    __tablename__ = "completion_participants"
    __table_args__ = (
        db.UniqueConstraint("record_id", "collaborator_id", name="uq_participant_record_collaborator"),
    )

    id = db.Column(db.Integer, primary_key=True)
    record_id = db.Column(
        db.Integer, db.ForeignKey("completion_records.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    collaborator_id = db.Column(db.Integer, nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False, default="contributor",
                     comment="principal | contributor")
    description = db.Column(db.Text, nullable=True,
                            comment="What this collaborator did")

    def to_dict(self):
        return {
            "collaborator_id": self.collaborator_id,
            "role": self.role,
            "description": self.description,
        }

    def __repr__(self):
        return f"<CompletionParticipant {self.collaborator_id} ({self.role})>"
