"""Pipeline entry model module."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pipeline_engine.models.base import AuditMixin, Base, TenantScopedMixin, utcnow
from pipeline_engine.models.enums import EntityType, StageStatus

TERMINAL_STATUSES = frozenset({StageStatus.COMPLETED, StageStatus.CANCELLED})


class PipelineEntry(Base, AuditMixin, TenantScopedMixin):
    """One entity's live position inside one pipeline.

    ``closed_at`` is set once the entry reaches a terminal status; the partial
    unique index only constrains open entries, so an entity may re-enrol after
    completion. ``revision`` is the optimistic version counter: every flush
    checks and bumps it.
    """

    __tablename__ = "pipeline_entries"
    __table_args__ = (
        Index("idx_pipeline_entries_tenant_pipeline_stage", "tenant_id", "pipeline_id", "current_stage"),
        Index("idx_pipeline_entries_tenant_entity", "tenant_id", "entity_type", "entity_id"),
        Index(
            "uq_pipeline_entries_open_entity",
            "pipeline_id",
            "entity_type",
            "entity_id",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
            postgresql_where=text("closed_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pipeline_id: Mapped[int] = mapped_column(ForeignKey("pipelines.id", ondelete="RESTRICT"), nullable=False)
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType, name="entity_type"), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(120), nullable=False)
    current_stage: Mapped[str] = mapped_column(String(120), nullable=False)
    previous_stage: Mapped[str | None] = mapped_column(String(120))
    stage_status: Mapped[StageStatus] = mapped_column(
        Enum(StageStatus, name="stage_status"), default=StageStatus.NOT_STARTED, nullable=False
    )
    progress: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    percentage_complete: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    entered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    moved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    moved_by: Mapped[str | None] = mapped_column(String(120))
    move_reason: Mapped[str | None] = mapped_column(Text)
    estimated_completion: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sla_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    sla_breached: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    revision: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": revision}

    pipeline = relationship("Pipeline", back_populates="entries")
    events = relationship("JourneyEvent", back_populates="entry", order_by="JourneyEvent.id")

    @property
    def is_closed(self) -> bool:
        return self.stage_status in TERMINAL_STATUSES
