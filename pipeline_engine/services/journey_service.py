"""Append-only journey event log."""

from __future__ import annotations

from typing import Any

from pipeline_engine.core.config import get_config
from pipeline_engine.models.enums import EntityType, JourneyEventType, TriggeredByType
from pipeline_engine.models.journey_event import JourneyEvent
from pipeline_engine.models.pipeline_entry import PipelineEntry
from pipeline_engine.services.base_service import BaseService


def default_event_name(event_type: JourneyEventType) -> str:
    return event_type.value.replace("_", " ").title()


class JourneyService(BaseService):
    """Writes and reads journey events.

    ``append`` only stages the row on the session; the caller commits it in
    the same transaction as the entry mutation it describes.
    """

    def append(
        self,
        entry: PipelineEntry,
        event_type: JourneyEventType,
        *,
        event_name: str | None = None,
        description: str | None = None,
        from_stage: str | None = None,
        to_stage: str | None = None,
        triggered_by: str | None = None,
        triggered_by_type: TriggeredByType = TriggeredByType.USER,
        event_data: dict[str, Any] | None = None,
        sla_impact: bool = False,
    ) -> JourneyEvent:
        event = JourneyEvent(
            tenant_id=entry.tenant_id,
            pipeline_id=entry.pipeline_id,
            pipeline_entry_id=entry.id,
            event_type=event_type,
            event_name=event_name or default_event_name(event_type),
            description=description,
            from_stage=from_stage,
            to_stage=to_stage,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            triggered_by=triggered_by,
            triggered_by_type=triggered_by_type,
            event_data=event_data,
            sla_impact=sla_impact,
        )
        self.db.add(event)
        return event

    def recent(self, tenant_id: int, entry_id: int, limit: int | None = None) -> list[JourneyEvent]:
        """Most recent events for an entry, newest first."""
        cap = limit or get_config().RECENT_EVENTS_LIMIT
        return (
            self.db.query(JourneyEvent)
            .filter(JourneyEvent.tenant_id == tenant_id, JourneyEvent.pipeline_entry_id == entry_id)
            .order_by(JourneyEvent.created_at.desc(), JourneyEvent.id.desc())
            .limit(cap)
            .all()
        )

    def history(self, tenant_id: int, entry_id: int) -> list[JourneyEvent]:
        """Full history for an entry in the order it happened."""
        return (
            self.db.query(JourneyEvent)
            .filter(JourneyEvent.tenant_id == tenant_id, JourneyEvent.pipeline_entry_id == entry_id)
            .order_by(JourneyEvent.created_at.asc(), JourneyEvent.id.asc())
            .all()
        )

    def list_events(
        self,
        tenant_id: int,
        pipeline_id: int | None = None,
        entry_id: int | None = None,
        entity_type: EntityType | None = None,
        entity_id: str | None = None,
        event_type: JourneyEventType | None = None,
        limit: int = 50,
    ) -> list[JourneyEvent]:
        query = self.db.query(JourneyEvent).filter(JourneyEvent.tenant_id == tenant_id)
        if pipeline_id is not None:
            query = query.filter(JourneyEvent.pipeline_id == pipeline_id)
        if entry_id is not None:
            query = query.filter(JourneyEvent.pipeline_entry_id == entry_id)
        if entity_type is not None:
            query = query.filter(JourneyEvent.entity_type == EntityType(entity_type))
        if entity_id is not None:
            query = query.filter(JourneyEvent.entity_id == entity_id)
        if event_type is not None:
            query = query.filter(JourneyEvent.event_type == JourneyEventType(event_type))
        return query.order_by(JourneyEvent.created_at.desc(), JourneyEvent.id.desc()).limit(limit).all()
