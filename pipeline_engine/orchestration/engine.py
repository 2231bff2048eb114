"""Engine facade: one session per operation, typed results out."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from pipeline_engine.core.config import get_config
from pipeline_engine.database.db import new_session
from pipeline_engine.models.enums import EntityType, JourneyEventType
from pipeline_engine.orchestration.locks import EntryLockRegistry, default_lock_registry
from pipeline_engine.schemas.entries import JourneyEventRequest, ManualOverrideRequest
from pipeline_engine.schemas.pipeline import PipelineCreateRequest, PipelineDefinition, PipelineUpdateRequest
from pipeline_engine.schemas.progress import EntryView, JourneyEventView, PipelineSummary, ProgressView
from pipeline_engine.services.entry_service import EntryService, TransitionResult
from pipeline_engine.services.interfaces import Collaborators
from pipeline_engine.services.journey_service import JourneyService
from pipeline_engine.services.override_service import OverrideService
from pipeline_engine.services.pipeline_service import PipelineService
from pipeline_engine.services.progress_calculator import calculate_progress
from pipeline_engine.services.sla_service import SlaSweepService, SweepResult


class PipelineEngine:
    """Entry point for enrolment, movement, overrides and the progress read model.

    The engine is safe to share between threads: each call opens its own
    session from ``session_factory`` and returns detached pydantic views.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        session_factory: Callable[[], Session] | None = None,
        locks: EntryLockRegistry | None = None,
    ) -> None:
        self.collaborators = collaborators
        self.session_factory = session_factory or new_session
        self.locks = locks or default_lock_registry

    @contextmanager
    def _entries(self) -> Iterator[EntryService]:
        with EntryService(self.session_factory(), collaborators=self.collaborators, locks=self.locks) as service:
            yield service

    @contextmanager
    def _pipelines(self) -> Iterator[PipelineService]:
        with PipelineService(self.session_factory()) as service:
            yield service

    # Pipelines

    def create_pipeline(self, tenant_id: int, request: PipelineCreateRequest | dict[str, Any]) -> PipelineDefinition:
        with self._pipelines() as service:
            pipeline = service.create_pipeline(tenant_id, request)
            return service.get_definition(tenant_id, pipeline.id)

    def update_pipeline(
        self, tenant_id: int, pipeline_id: int, request: PipelineUpdateRequest | dict[str, Any]
    ) -> PipelineDefinition:
        with self._pipelines() as service:
            service.update_pipeline(tenant_id, pipeline_id, request)
            return service.get_definition(tenant_id, pipeline_id)

    def get_definition(self, tenant_id: int, pipeline_id: int) -> PipelineDefinition:
        with self._pipelines() as service:
            return service.get_definition(tenant_id, pipeline_id)

    def list_pipelines(
        self, tenant_id: int, type: Any | None = None, is_active: bool | None = None
    ) -> list[PipelineSummary]:
        with self._pipelines() as service:
            return [
                PipelineSummary(
                    id=pipeline.id,
                    name=pipeline.name,
                    description=pipeline.description,
                    type=pipeline.type,
                    enable_sla=pipeline.enable_sla,
                    enable_auto_actions=pipeline.enable_auto_actions,
                    version=pipeline.version,
                )
                for pipeline in service.list_pipelines(tenant_id, type=type, is_active=is_active)
            ]

    # Entries

    def enroll(
        self,
        tenant_id: int,
        pipeline_id: int,
        entity_type: EntityType | str,
        entity_id: str,
        start_stage: str | None = None,
        actor: str | None = None,
        data: dict[str, Any] | None = None,
        notes: str | None = None,
    ) -> TransitionResult:
        with self._entries() as service:
            return service.enroll(
                tenant_id,
                pipeline_id,
                entity_type,
                entity_id,
                start_stage=start_stage,
                actor=actor,
                data=data,
                notes=notes,
            )

    def move_to_stage(
        self,
        tenant_id: int,
        entry_id: int,
        target_stage: str,
        reason: str | None = None,
        actor: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> TransitionResult:
        with self._entries() as service:
            return service.move_to_stage(tenant_id, entry_id, target_stage, reason=reason, actor=actor, data=data)

    def update_progress(
        self,
        tenant_id: int,
        entry_id: int,
        progress: float | None = None,
        percentage_complete: float | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        with self._entries() as service:
            return service.update_progress(
                tenant_id, entry_id, progress=progress, percentage_complete=percentage_complete, actor=actor
            )

    def add_note(self, tenant_id: int, entry_id: int, note: str, actor: str) -> TransitionResult:
        with self._entries() as service:
            return service.add_note(tenant_id, entry_id, note, actor)

    def complete(self, tenant_id: int, entry_id: int, actor: str | None = None, reason: str | None = None) -> TransitionResult:
        with self._entries() as service:
            return service.complete(tenant_id, entry_id, actor=actor, reason=reason)

    def cancel(self, tenant_id: int, entry_id: int, actor: str | None = None, reason: str | None = None) -> TransitionResult:
        with self._entries() as service:
            return service.cancel(tenant_id, entry_id, actor=actor, reason=reason)

    def manual_override(
        self, tenant_id: int, entry_id: int, request: ManualOverrideRequest | dict[str, Any]
    ) -> TransitionResult:
        with self._entries() as service:
            return OverrideService(service).apply(tenant_id, entry_id, request)

    def record_event(
        self, tenant_id: int, entry_id: int, request: JourneyEventRequest | dict[str, Any]
    ) -> TransitionResult:
        with self._entries() as service:
            return service.record_event(tenant_id, entry_id, request)

    # Reads

    def get_entry(self, tenant_id: int, entry_id: int) -> EntryView:
        with self._entries() as service:
            return EntryView.model_validate(service.get_entry(tenant_id, entry_id))

    def list_entries(
        self,
        tenant_id: int,
        pipeline_id: int | None = None,
        entity_type: EntityType | str | None = None,
        entity_id: str | None = None,
        current_stage: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[EntryView], int]:
        with self._entries() as service:
            items, total = service.list_entries(
                tenant_id,
                pipeline_id=pipeline_id,
                entity_type=entity_type,
                entity_id=entity_id,
                current_stage=current_stage,
                limit=limit,
                offset=offset,
            )
            return [EntryView.model_validate(item) for item in items], total

    def list_events(
        self,
        tenant_id: int,
        pipeline_id: int | None = None,
        entry_id: int | None = None,
        entity_type: EntityType | str | None = None,
        entity_id: str | None = None,
        event_type: JourneyEventType | str | None = None,
        limit: int = 50,
    ) -> list[JourneyEventView]:
        with JourneyService(self.session_factory()) as service:
            events = service.list_events(
                tenant_id,
                pipeline_id=pipeline_id,
                entry_id=entry_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                limit=limit,
            )
            return [JourneyEventView.model_validate(event) for event in events]

    def get_progress(
        self, tenant_id: int, entry_id: int, now: datetime | None = None, recent_limit: int | None = None
    ) -> ProgressView:
        """Compose the entry, per-stage progress, SLA figures and recent events."""
        limit = recent_limit or get_config().RECENT_EVENTS_LIMIT
        with self._entries() as service:
            entry = service.get_entry(tenant_id, entry_id)
            definition = service.pipelines.get_definition(tenant_id, entry.pipeline_id)
            snapshot = calculate_progress(definition, entry, now=now)
            events = service.journey.recent(tenant_id, entry_id, limit=limit)
            return ProgressView(
                entry=EntryView.model_validate(entry),
                pipeline=PipelineSummary(
                    id=definition.id,
                    name=definition.name,
                    description=definition.description,
                    type=definition.type,
                    enable_sla=definition.enable_sla,
                    enable_auto_actions=definition.enable_auto_actions,
                    version=definition.version,
                ),
                stages=snapshot.stages,
                overall_progress=snapshot.overall_progress,
                sla=snapshot.sla,
                next_steps=snapshot.next_steps,
                recent_events=[JourneyEventView.model_validate(event) for event in events],
            )

    # Background

    def sweep_sla(self, tenant_id: int | None = None, now: datetime | None = None) -> SweepResult:
        with SlaSweepService(self.session_factory(), collaborators=self.collaborators) as service:
            return service.sweep(tenant_id=tenant_id, now=now)
