"""initial maintenance period schema

Creates the maintenance-period tables:
  - coordinators, collaborators: identity collaborator (read-only to the core)
  - device_catalog: catalog collaborator (read-only to the core)
  - maintenance_periods: periods with derived counters + version column
  - completion_records: device reports
  - completion_participants: collaborative completion roster
  - period_assignments: individual / pooled assignments (single table)
  - scheduled_jobs: background job registry

Tables are created conditionally so the revision can run against a database
that already received them via db.create_all() in development.

Revision ID: a1c3e5f7b9d2
Revises:
Create Date: 2026-10-17 09:12:44.318205
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = 'a1c3e5f7b9d2'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Identity ──────────────────────────────────────────────────────────
    if "coordinators" not in existing:
        op.create_table(
            "coordinators",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("policy_id", sa.Integer(), nullable=True,
                      comment="Policy (poliza) this coordinator manages"),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_coordinators_policy_id", "coordinators", ["policy_id"])

    if "collaborators" not in existing:
        op.create_table(
            "collaborators",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("policy_id", sa.Integer(), nullable=True),
            sa.Column("coordinator_id", sa.Integer(), nullable=True),
            sa.Column("role", sa.String(length=20), nullable=True, comment="encargado | auxiliar"),
            sa.Column("status", sa.String(length=20), nullable=True, comment="active | inactive"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["coordinator_id"], ["coordinators.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("email"),
        )
        op.create_index("ix_collaborators_policy_id", "collaborators", ["policy_id"])
        op.create_index("ix_collaborators_coordinator_id", "collaborators", ["coordinator_id"])
        op.create_index("ix_collaborators_status", "collaborators", ["status"])

    # ── Catalog ───────────────────────────────────────────────────────────
    if "device_catalog" not in existing:
        op.create_table(
            "device_catalog",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=100), nullable=False),
            sa.Column("location", sa.String(length=200), nullable=False),
            sa.Column("identifier", sa.String(length=100), nullable=False),
            sa.Column("building", sa.String(length=100), nullable=True),
            sa.Column("level", sa.String(length=50), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(),
                      comment="Deactivate without deleting"),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("type", "location", "identifier",
                                name="uq_catalog_type_location_identifier"),
        )
        for col in ("type", "location", "identifier", "is_active"):
            op.create_index(f"ix_device_catalog_{col}", "device_catalog", [col])

    # ── Periods ───────────────────────────────────────────────────────────
    if "maintenance_periods" not in existing:
        op.create_table(
            "maintenance_periods",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("coordinator_id", sa.Integer(), nullable=False),
            sa.Column("policy_id", sa.Integer(), nullable=True),
            sa.Column("specialty_id", sa.Integer(), nullable=True),
            sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("total_devices", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completed_devices", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["coordinator_id"], ["coordinators.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_maintenance_periods_coordinator_id", "maintenance_periods", ["coordinator_id"])
        op.create_index("ix_maintenance_periods_policy_id", "maintenance_periods", ["policy_id"])
        op.create_index("ix_maintenance_periods_specialty_id", "maintenance_periods", ["specialty_id"])
        op.create_index("ix_maintenance_periods_is_active", "maintenance_periods", ["is_active"])
        op.create_index("ix_period_coordinator_active", "maintenance_periods",
                        ["coordinator_id", "is_active"])
        op.create_index("ix_period_policy_specialty_active", "maintenance_periods",
                        ["policy_id", "specialty_id", "is_active"])
        op.create_index("ix_period_window", "maintenance_periods", ["start_at", "end_at"])

    # ── Completion records ────────────────────────────────────────────────
    if "completion_records" not in existing:
        op.create_table(
            "completion_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("catalog_item_id", sa.Integer(), nullable=False),
            sa.Column("collaborator_id", sa.Integer(), nullable=True, comment="Principal collaborator"),
            sa.Column("specialty_id", sa.Integer(), nullable=True),
            sa.Column("period_id", sa.Integer(), nullable=True, comment="Originating period, if any"),
            sa.Column("captured_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("work_evidence", sa.String(length=500), nullable=True),
            sa.Column("device_evidence", sa.String(length=500), nullable=True),
            sa.Column("view_evidence", sa.String(length=500), nullable=True),
            sa.Column("manual_upload_reason", sa.Text(), nullable=True),
            sa.Column("note", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="completed"),
            sa.Column("is_assigned", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_collaborative", sa.Boolean(), nullable=False, server_default=sa.false()),
            *_timestamps(),
            sa.ForeignKeyConstraint(["collaborator_id"], ["collaborators.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["period_id"], ["maintenance_periods.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_completion_records_catalog_item_id", "completion_records", ["catalog_item_id"])
        op.create_index("ix_completion_records_collaborator_id", "completion_records", ["collaborator_id"])
        op.create_index("ix_completion_records_period_id", "completion_records", ["period_id"])
        op.create_index("ix_record_period_collaborator", "completion_records",
                        ["period_id", "collaborator_id"])

    if "completion_participants" not in existing:
        op.create_table(
            "completion_participants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("record_id", sa.Integer(), nullable=False),
            sa.Column("collaborator_id", sa.Integer(), nullable=False),
            sa.Column("role", sa.String(length=20), nullable=False, server_default="contributor",
                      comment="principal | contributor"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.ForeignKeyConstraint(["record_id"], ["completion_records.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("record_id", "collaborator_id", name="uq_participant_record_collaborator"),
        )
        op.create_index("ix_completion_participants_record_id", "completion_participants", ["record_id"])
        op.create_index("ix_completion_participants_collaborator_id", "completion_participants",
                        ["collaborator_id"])

    # ── Assignments ───────────────────────────────────────────────────────
    if "period_assignments" not in existing:
        op.create_table(
            "period_assignments",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("period_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=20), nullable=False, comment="individual | pooled"),
            sa.Column("catalog_item_id", sa.Integer(), nullable=False),
            sa.Column("collaborator_id", sa.Integer(), nullable=True),
            sa.Column("eligible_collaborator_ids", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completion_record_id", sa.Integer(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("completed_by_id", sa.Integer(), nullable=True),
            sa.Column("is_collaborative", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("contributor_ids", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["period_id"], ["maintenance_periods.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["collaborator_id"], ["collaborators.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["completion_record_id"], ["completion_records.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("period_id", "catalog_item_id", "collaborator_id",
                                name="uq_assignment_period_item_collaborator"),
            sa.CheckConstraint(
                "(kind = 'individual' AND collaborator_id IS NOT NULL) "
                "OR (kind = 'pooled' AND collaborator_id IS NULL)",
                name="ck_assignment_shape",
            ),
        )
        for col in ("period_id", "catalog_item_id", "collaborator_id", "status", "completion_record_id"):
            op.create_index(f"ix_period_assignments_{col}", "period_assignments", [col])
        op.create_index("ix_assignment_period_item", "period_assignments", ["period_id", "catalog_item_id"])

    # ── Scheduler ─────────────────────────────────────────────────────────
    if "scheduled_jobs" not in existing:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "period_assignments",
        "completion_participants",
        "completion_records",
        "maintenance_periods",
        "device_catalog",
        "collaborators",
        "coordinators",
    ):
        op.drop_table(table)
