"""
Maintenance Period Platform
Identity models — collaborators and coordinators.

Owned by the identity collaborator; credentials live elsewhere. The core
only resolves ids to existence and policy membership via
``services.identity_resolver``.
"""

from datetime import datetime, timezone

from maintenance_app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

COLLABORATOR_ROLES = {"encargado", "auxiliar"}
COLLABORATOR_STATUSES = {"active", "inactive"}


class Coordinator(db.Model):
    """Owns maintenance periods for one policy."""

    __tablename__ = "coordinators"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    policy_id = db.Column(db.Integer, nullable=True, index=True,
                          comment="Policy (poliza) this coordinator manages")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "policy_id": self.policy_id,
        }

    def __repr__(self):
        return f"<Coordinator {self.id}: {self.email}>"


class Collaborator(db.Model):
    """A technician who receives assignments and submits completion evidence."""

    __tablename__ = "collaborators"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    policy_id = db.Column(db.Integer, nullable=True, index=True)
    coordinator_id = db.Column(
        db.Integer, db.ForeignKey("coordinators.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    role = db.Column(db.String(20), default="auxiliar",
                     comment="encargado | auxiliar")
    status = db.Column(db.String(20), default="active", index=True,
                       comment="active | inactive")

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "policy_id": self.policy_id,
            "coordinator_id": self.coordinator_id,
            "role": self.role,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Collaborator {self.id}: {self.email}>"
