"""
Maintenance Period Platform
Maintenance period domain models.

Models:
    - MaintenancePeriod: coordinator-owned, time-bounded container of work
    - Assignment: one task instance inside a period (single-table inheritance)
        - IndividualAssignment: bound to exactly one collaborator
        - PooledAssignment: bound to a list of eligible collaborators;
          completion by any of them completes it for the whole pool

Architecture chain: MaintenancePeriod → Assignment → CompletionRecord (by reference)

The period owns its assignments (delete-orphan). Derived counters are
recomputed from the assignment collection on every flush, never written
independently.
"""

from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.orm import Session

from maintenance_app.models import db
from maintenance_app.utils.helpers import as_utc, isoformat, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

OPEN_STATUSES = {"pending", "in_progress"}

# completed → pending only through the reversion service
ASSIGNMENT_TRANSITIONS = {
    "pending":     ["in_progress", "completed"],
    "in_progress": ["completed"],
    "completed":   ["pending"],
}

POOL_SLOT = "pool"
DEFAULT_PERIOD_NAME = "Maintenance Period"


def derive_active(end_at: datetime, now: datetime | None = None) -> bool:
    """A period is active unless its end has already passed.

    A window entirely in the future is still active.
    """
    now = as_utc(now) or utcnow()
    return now <= as_utc(end_at)


def completion_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(completed / total * 100)


# ═══════════════════════════════════════════════════════════════════════════
#  MAINTENANCE PERIOD
# ═══════════════════════════════════════════════════════════════════════════

class MaintenancePeriod(db.Model):
    """
    A coordinator-defined window during which maintenance tasks are assigned
    and tracked.

    ``version`` is the optimistic-concurrency counter: any UPDATE issued from
    a stale copy of the row fails with StaleDataError at flush time.
    """

    __tablename__ = "maintenance_periods"
    __table_args__ = (
        db.Index("ix_period_coordinator_active", "coordinator_id", "is_active"),
        db.Index("ix_period_policy_specialty_active", "policy_id", "specialty_id", "is_active"),
        db.Index("ix_period_window", "start_at", "end_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, default=DEFAULT_PERIOD_NAME)
    coordinator_id = db.Column(
        db.Integer, db.ForeignKey("coordinators.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    policy_id = db.Column(db.Integer, nullable=True, index=True,
                          comment="Policy (poliza) the period belongs to")
    specialty_id = db.Column(db.Integer, nullable=True, index=True,
                             comment="Specialty the period covers")
    start_at = db.Column(db.DateTime(timezone=True), nullable=False)
    end_at = db.Column(db.DateTime(timezone=True), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    description = db.Column(db.Text, default="")

    # Derived, see refresh_stats()
    total_devices = db.Column(db.Integer, default=0, nullable=False)
    completed_devices = db.Column(db.Integer, default=0, nullable=False)
    completion_percentage = db.Column(db.Integer, default=0, nullable=False)

    version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    assignments = db.relationship(
        "Assignment",
        back_populates="period",
        cascade="all, delete-orphan",
        order_by="Assignment.id",
        lazy="select",
    )

    __mapper_args__ = {"version_id_col": version}

    # ── Derived state ────────────────────────────────────────────────────

    def refresh_stats(self, exclude=()) -> None:
        """Recompute counters from the assignment collection."""
        live = [a for a in self.assignments if a not in exclude]
        total = len(live)
        completed = sum(1 for a in live if a.status == "completed")
        self.total_devices = total
        self.completed_devices = completed
        self.completion_percentage = completion_percentage(completed, total)

    def assignment_map(self) -> dict[tuple[int, str], "Assignment"]:
        """Keyed view: (catalog_item_id, slot_key) → assignment."""
        return {(a.catalog_item_id, a.slot_key): a for a in self.assignments}

    def find_individual(self, catalog_item_id: int, collaborator_id: int):
        return self.assignment_map().get((catalog_item_id, str(collaborator_id)))

    def find_pooled(self, catalog_item_id: int):
        return self.assignment_map().get((catalog_item_id, POOL_SLOT))

    def pooled_siblings(self, catalog_item_id: int) -> list["PooledAssignment"]:
        return [
            a for a in self.assignments
            if a.is_pooled and a.catalog_item_id == catalog_item_id
        ]

    def summary(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "start_at": isoformat(self.start_at),
            "end_at": isoformat(self.end_at),
            "is_active": self.is_active,
        }

    def to_dict(self, include_assignments: bool = True):
        result = {
            "id": self.id,
            "name": self.name,
            "coordinator_id": self.coordinator_id,
            "policy_id": self.policy_id,
            "specialty_id": self.specialty_id,
            "start_at": isoformat(self.start_at),
            "end_at": isoformat(self.end_at),
            "is_active": self.is_active,
            "description": self.description or "",
            "total_devices": self.total_devices,
            "completed_devices": self.completed_devices,
            "completion_percentage": self.completion_percentage,
            "version": self.version,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }
        if include_assignments:
            result["assignments"] = [a.to_dict() for a in self.assignments]
        return result

    def __repr__(self):
        return f"<MaintenancePeriod {self.id}: {self.name} active={self.is_active}>"


# ═══════════════════════════════════════════════════════════════════════════
#  ASSIGNMENTS
# ═══════════════════════════════════════════════════════════════════════════

class Assignment(db.Model):
    """
    One task-to-collaborator(s) binding inside a period.

    Never instantiated directly: use IndividualAssignment or PooledAssignment.
    The CHECK constraint keeps the two shapes exclusive at the database level.

    ``catalog_item_id`` deliberately has no foreign key: catalog items are
    deleted independently and dangling rows are removed by the repair sweep.
    """

    __tablename__ = "period_assignments"
    __table_args__ = (
        db.UniqueConstraint(
            "period_id", "catalog_item_id", "collaborator_id",
            name="uq_assignment_period_item_collaborator",
        ),
        db.CheckConstraint(
            "(kind = 'individual' AND collaborator_id IS NOT NULL) "
            "OR (kind = 'pooled' AND collaborator_id IS NULL)",
            name="ck_assignment_shape",
        ),
        db.Index("ix_assignment_period_item", "period_id", "catalog_item_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    period_id = db.Column(
        db.Integer, db.ForeignKey("maintenance_periods.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    kind = db.Column(db.String(20), nullable=False, comment="individual | pooled")
    catalog_item_id = db.Column(db.Integer, nullable=False, index=True)
    collaborator_id = db.Column(
        db.Integer, db.ForeignKey("collaborators.id", ondelete="CASCADE"),
        nullable=True, index=True, comment="Individual owner (NULL when pooled)",
    )
    eligible_collaborator_ids = db.Column(db.JSON, default=list,
                                          comment="Pooled only: who may complete it")

    status = db.Column(db.String(20), default="pending", nullable=False, index=True)
    assigned_at = db.Column(db.DateTime(timezone=True),
                            default=lambda: datetime.now(timezone.utc))
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completion_record_id = db.Column(
        db.Integer, db.ForeignKey("completion_records.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    notes = db.Column(db.Text, default="")

    # Completion bookkeeping
    completed_by_id = db.Column(db.Integer, nullable=True,
                                comment="Collaborator who actually completed it")
    is_collaborative = db.Column(db.Boolean, default=False, nullable=False)
    contributor_ids = db.Column(db.JSON, default=list,
                                comment="Completer first, then contributors")

    period = db.relationship("MaintenancePeriod", back_populates="assignments")

    __mapper_args__ = {"polymorphic_on": kind}

    is_pooled = False

    @property
    def slot_key(self) -> str:
        raise NotImplementedError

    def matches(self, collaborator_id: int) -> bool:
        """Whether ``collaborator_id`` may act on this assignment."""
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def can_transition(self, to_status: str) -> bool:
        return to_status in ASSIGNMENT_TRANSITIONS.get(self.status, [])

    def mark_completed(self, *, completed_at, completed_by_id, completion_record_id,
                       is_collaborative=False, contributor_ids=None) -> None:
        self.status = "completed"
        self.completed_at = completed_at
        self.completed_by_id = completed_by_id
        self.completion_record_id = completion_record_id
        self.is_collaborative = bool(is_collaborative)
        self.contributor_ids = list(contributor_ids or [])

    def reset_to_pending(self) -> None:
        self.status = "pending"
        self.completed_at = None
        self.completed_by_id = None
        self.completion_record_id = None
        self.is_collaborative = False
        self.contributor_ids = []

    def to_dict(self):
        return {
            "id": self.id,
            "period_id": self.period_id,
            "kind": self.kind,
            "is_pooled": self.is_pooled,
            "catalog_item_id": self.catalog_item_id,
            "collaborator_id": self.collaborator_id,
            "eligible_collaborator_ids": list(self.eligible_collaborator_ids or []),
            "status": self.status,
            "assigned_at": isoformat(self.assigned_at),
            "completed_at": isoformat(self.completed_at),
            "completion_record_id": self.completion_record_id,
            "notes": self.notes or "",
            "completed_by_id": self.completed_by_id,
            "is_collaborative": self.is_collaborative,
            "contributor_ids": list(self.contributor_ids or []),
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}: item={self.catalog_item_id} {self.status}>"


class IndividualAssignment(Assignment):
    """Assignment owned by exactly one collaborator."""

    __mapper_args__ = {"polymorphic_identity": "individual"}

    def __init__(self, *, collaborator_id: int, **kwargs):
        if collaborator_id is None:
            raise ValueError("IndividualAssignment requires collaborator_id")
        super().__init__(collaborator_id=collaborator_id, eligible_collaborator_ids=[], **kwargs)

    @property
    def slot_key(self) -> str:
        return str(self.collaborator_id)

    def matches(self, collaborator_id: int) -> bool:
        return self.collaborator_id == collaborator_id


class PooledAssignment(Assignment):
    """Assignment shared by a pool of eligible collaborators."""

    __mapper_args__ = {"polymorphic_identity": "pooled"}

    is_pooled = True

    def __init__(self, *, eligible_collaborator_ids, **kwargs):
        eligible = list(eligible_collaborator_ids or [])
        if not eligible:
            raise ValueError("PooledAssignment requires a non-empty eligible list")
        super().__init__(collaborator_id=None, eligible_collaborator_ids=eligible, **kwargs)

    @property
    def slot_key(self) -> str:
        return POOL_SLOT

    def matches(self, collaborator_id: int) -> bool:
        return collaborator_id in (self.eligible_collaborator_ids or [])


# ── Derived counters: recomputed before every flush ──────────────────────────

@event.listens_for(Session, "before_flush")
def _refresh_period_stats(session, flush_context, instances):
    touched = set()
    for obj in list(session.new) + list(session.dirty) + list(session.deleted):
        if isinstance(obj, MaintenancePeriod):
            touched.add(obj)
        elif isinstance(obj, Assignment) and obj.period is not None:
            touched.add(obj.period)
    deleted = set(session.deleted)
    for period in touched:
        if period in deleted:
            continue
        period.refresh_stats(exclude=deleted)
