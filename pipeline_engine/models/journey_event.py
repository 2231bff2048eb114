"""Journey event model module."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pipeline_engine.models.base import Base, TenantScopedMixin, utcnow
from pipeline_engine.models.enums import EntityType, JourneyEventType, TriggeredByType


class JourneyEvent(Base, TenantScopedMixin):
    """Append-only audit record of a transition, override or milestone."""

    __tablename__ = "journey_events"
    __table_args__ = (
        Index("idx_journey_events_entry_created", "pipeline_entry_id", "created_at", "id"),
        Index("idx_journey_events_tenant_type", "tenant_id", "event_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    pipeline_id: Mapped[int] = mapped_column(ForeignKey("pipelines.id", ondelete="RESTRICT"), nullable=False)
    pipeline_entry_id: Mapped[int] = mapped_column(
        ForeignKey("pipeline_entries.id", ondelete="RESTRICT"), nullable=False
    )
    event_type: Mapped[JourneyEventType] = mapped_column(Enum(JourneyEventType, name="journey_event_type"), nullable=False)
    event_name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    from_stage: Mapped[str | None] = mapped_column(String(120))
    to_stage: Mapped[str | None] = mapped_column(String(120))
    entity_type: Mapped[EntityType] = mapped_column(Enum(EntityType, name="entity_type"), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(120), nullable=False)
    triggered_by: Mapped[str | None] = mapped_column(String(120))
    triggered_by_type: Mapped[TriggeredByType] = mapped_column(
        Enum(TriggeredByType, name="triggered_by_type"), default=TriggeredByType.USER, nullable=False
    )
    event_data: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    sla_impact: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    entry = relationship("PipelineEntry", back_populates="events")
