"""pipeline engine schema: tenants, pipelines, entries, journey events, assignment counters

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

ENTITY_TYPES = ("STUDENT", "LEAD", "APPLICATION")
PIPELINE_TYPES = (
    "LEAD_CONVERSION",
    "STUDENT_ONBOARDING",
    "APPLICATION_PROCESSING",
    "VISA_PROCESSING",
    "DOCUMENT_COLLECTION",
    "GENERAL",
)
STAGE_STATUSES = ("NOT_STARTED", "IN_PROGRESS", "COMPLETED", "CANCELLED")
JOURNEY_EVENT_TYPES = (
    "ENROLLED",
    "STAGE_CHANGED",
    "MANUAL_OVERRIDE",
    "COMPLETED",
    "CANCELLED",
    "SLA_BREACHED",
    "AUTO_ACTION_TRIGGERED",
    "DOCUMENT_UPLOADED",
    "INTERVIEW_SCHEDULED",
    "FEE_PAID",
    "VISA_SUBMITTED",
    "OFFER_RECEIVED",
    "APPLICATION_FILED",
    "MILESTONE_REACHED",
    "REMINDER_SENT",
    "ESCALATION_TRIGGERED",
)
TRIGGERED_BY_TYPES = ("USER", "SYSTEM", "AUTOMATION", "WEBHOOK")


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    entity_type = sa.Enum(*ENTITY_TYPES, name="entity_type")

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("subdomain", sa.String(length=120), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("subdomain"),
    )

    op.create_table(
        "pipelines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Enum(*PIPELINE_TYPES, name="pipeline_type"), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False, server_default="GENERAL"),
        sa.Column("stages", sa.JSON(), nullable=False),
        sa.Column("enable_sla", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("enable_auto_actions", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipelines_tenant_id", "pipelines", ["tenant_id"])
    op.create_index("idx_pipelines_tenant_type", "pipelines", ["tenant_id", "type"])
    op.create_index("idx_pipelines_tenant_active", "pipelines", ["tenant_id", "is_active"])

    op.create_table(
        "pipeline_entries",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("pipeline_id", sa.Integer(), nullable=False),
        sa.Column("entity_type", entity_type, nullable=False),
        sa.Column("entity_id", sa.String(length=120), nullable=False),
        sa.Column("current_stage", sa.String(length=120), nullable=False),
        sa.Column("previous_stage", sa.String(length=120), nullable=True),
        sa.Column("stage_status", sa.Enum(*STAGE_STATUSES, name="stage_status"), nullable=False),
        sa.Column("progress", sa.Float(), nullable=False, server_default="0"),
        sa.Column("percentage_complete", sa.Float(), nullable=False, server_default="0"),
        sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("moved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("moved_by", sa.String(length=120), nullable=True),
        sa.Column("move_reason", sa.Text(), nullable=True),
        sa.Column("estimated_completion", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sla_breached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["pipeline_id"], ["pipelines.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pipeline_entries_tenant_id", "pipeline_entries", ["tenant_id"])
    op.create_index(
        "idx_pipeline_entries_tenant_pipeline_stage",
        "pipeline_entries",
        ["tenant_id", "pipeline_id", "current_stage"],
    )
    op.create_index(
        "idx_pipeline_entries_tenant_entity",
        "pipeline_entries",
        ["tenant_id", "entity_type", "entity_id"],
    )
    # At most one open entry per entity and pipeline.
    op.create_index(
        "uq_pipeline_entries_open_entity",
        "pipeline_entries",
        ["pipeline_id", "entity_type", "entity_id"],
        unique=True,
        sqlite_where=sa.text("closed_at IS NULL"),
        postgresql_where=sa.text("closed_at IS NULL"),
    )

    op.create_table(
        "journey_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("pipeline_id", sa.Integer(), nullable=False),
        sa.Column("pipeline_entry_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.Enum(*JOURNEY_EVENT_TYPES, name="journey_event_type"), nullable=False),
        sa.Column("event_name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("from_stage", sa.String(length=120), nullable=True),
        sa.Column("to_stage", sa.String(length=120), nullable=True),
        sa.Column(
            "entity_type",
            sa.Enum(*ENTITY_TYPES, name="entity_type").with_variant(
                postgresql.ENUM(*ENTITY_TYPES, name="entity_type", create_type=False), "postgresql"
            ),
            nullable=False,
        ),
        sa.Column("entity_id", sa.String(length=120), nullable=False),
        sa.Column("triggered_by", sa.String(length=120), nullable=True),
        sa.Column(
            "triggered_by_type",
            sa.Enum(*TRIGGERED_BY_TYPES, name="triggered_by_type"),
            nullable=False,
            server_default="USER",
        ),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("sla_impact", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["pipeline_id"], ["pipelines.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["pipeline_entry_id"], ["pipeline_entries.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_journey_events_tenant_id", "journey_events", ["tenant_id"])
    op.create_index(
        "idx_journey_events_entry_created",
        "journey_events",
        ["pipeline_entry_id", "created_at", "id"],
    )
    op.create_index("idx_journey_events_tenant_type", "journey_events", ["tenant_id", "event_type"])

    op.create_table(
        "assignment_counters",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("counter_key", sa.String(length=255), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "counter_key", name="uq_assignment_counters_tenant_key"),
    )
    op.create_index("ix_assignment_counters_tenant_id", "assignment_counters", ["tenant_id"])


def downgrade() -> None:
    op.drop_index("ix_assignment_counters_tenant_id", table_name="assignment_counters")
    op.drop_table("assignment_counters")

    op.drop_index("idx_journey_events_tenant_type", table_name="journey_events")
    op.drop_index("idx_journey_events_entry_created", table_name="journey_events")
    op.drop_index("ix_journey_events_tenant_id", table_name="journey_events")
    op.drop_table("journey_events")

    op.drop_index("uq_pipeline_entries_open_entity", table_name="pipeline_entries")
    op.drop_index("idx_pipeline_entries_tenant_entity", table_name="pipeline_entries")
    op.drop_index("idx_pipeline_entries_tenant_pipeline_stage", table_name="pipeline_entries")
    op.drop_index("ix_pipeline_entries_tenant_id", table_name="pipeline_entries")
    op.drop_table("pipeline_entries")

    op.drop_index("idx_pipelines_tenant_active", table_name="pipelines")
    op.drop_index("idx_pipelines_tenant_type", table_name="pipelines")
    op.drop_index("ix_pipelines_tenant_id", table_name="pipelines")
    op.drop_table("pipelines")

    op.drop_table("tenants")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum_name in (
            "triggered_by_type",
            "journey_event_type",
            "stage_status",
            "entity_type",
            "pipeline_type",
        ):
            postgresql.ENUM(name=enum_name).drop(bind, checkfirst=True)
