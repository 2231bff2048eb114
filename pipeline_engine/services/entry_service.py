"""Pipeline entry lifecycle: enrolment, stage transitions and terminal states.

Every mutation of an entry goes through ``mutate_entry``: the per-entry lock
serialises callers in this process, and the ``revision`` version column
rejects a stale write from any other process, in which case the mutation is
replayed against a fresh copy of the row. Automations always run after the
transition has been committed and outside the lock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from pipeline_engine.core.config import get_config
from pipeline_engine.core.exceptions import (
    ConcurrentModificationError,
    DuplicateEntryError,
    EntityNotFoundError,
    EntryNotFoundError,
    EntryTerminalError,
    PipelineEngineError,
    UnknownStageError,
    ValidationError,
)
from pipeline_engine.models.base import as_utc, utcnow
from pipeline_engine.models.enums import (
    ENGINE_EVENT_TYPES,
    EntityType,
    JourneyEventType,
    StageStatus,
    TriggeredByType,
)
from pipeline_engine.models.journey_event import JourneyEvent
from pipeline_engine.models.pipeline_entry import TERMINAL_STATUSES, PipelineEntry
from pipeline_engine.orchestration.locks import EntryLockRegistry, default_lock_registry
from pipeline_engine.orchestration.state_machine import ENTRY_STATUS_MACHINE, StateMachine
from pipeline_engine.schemas.entries import JourneyEventRequest, ProgressUpdateRequest, parse_payload
from pipeline_engine.schemas.pipeline import PipelineDefinition, Stage
from pipeline_engine.schemas.progress import EntryView, JourneyEventView
from pipeline_engine.services.assignment_service import AssignmentService
from pipeline_engine.services.automation_executor import AutomationContext, AutomationExecutor, AutomationReport
from pipeline_engine.services.base_service import BaseService
from pipeline_engine.services.interfaces import Collaborators
from pipeline_engine.services.journey_service import JourneyService
from pipeline_engine.services.pipeline_service import PipelineService
from pipeline_engine.services.progress_calculator import (
    compute_sla_deadline,
    estimate_completion,
    stage_progress_fraction,
)
from pipeline_engine.utils.validators import optional_text, sanitize_text

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNRESOLVED = object()


@dataclass
class TransitionResult:
    """Outcome of one engine operation: the entry after it, plus automation results."""

    action: str
    entry: EntryView
    event: JourneyEventView | None = None
    automation: AutomationReport | None = None

    @property
    def automations_failed(self) -> int:
        return self.automation.failed if self.automation else 0

    def summary(self) -> str:
        report = self.automation
        if report is None or report.skipped or not report.attempted:
            return self.action
        if report.failed:
            return f"{self.action}, {report.failed} of {report.attempted} automations failed"
        return f"{self.action}, {report.attempted} automations succeeded"


def coerce_entity_type(value: EntityType | str) -> EntityType:
    try:
        return EntityType(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown entity type: {value}") from exc


class EntryService(BaseService):
    def __init__(
        self,
        db: Session | None = None,
        collaborators: Collaborators | None = None,
        locks: EntryLockRegistry | None = None,
    ) -> None:
        super().__init__(db)
        self.collaborators = collaborators
        self.locks = locks or default_lock_registry
        self.pipelines = PipelineService(self.db)
        self.journey = JourneyService(self.db)
        self.assignments = AssignmentService(self.db)
        self.executor = AutomationExecutor(collaborators, assignments=self.assignments) if collaborators else None

    # Reads

    def _load(self, tenant_id: int, entry_id: int) -> PipelineEntry:
        entry = (
            self.db.query(PipelineEntry)
            .filter(
                PipelineEntry.id == entry_id,
                PipelineEntry.tenant_id == tenant_id,
                PipelineEntry.deleted_at.is_(None),
            )
            .populate_existing()
            .first()
        )
        if entry is None:
            raise EntryNotFoundError(f"Pipeline entry {entry_id} not found")
        return entry

    def get_entry(self, tenant_id: int, entry_id: int) -> PipelineEntry:
        return self._load(tenant_id, entry_id)

    def find_open_entry(
        self, tenant_id: int, pipeline_id: int, entity_type: EntityType | str, entity_id: str
    ) -> PipelineEntry | None:
        return (
            self.db.query(PipelineEntry)
            .filter(
                PipelineEntry.tenant_id == tenant_id,
                PipelineEntry.pipeline_id == pipeline_id,
                PipelineEntry.entity_type == coerce_entity_type(entity_type),
                PipelineEntry.entity_id == entity_id,
                PipelineEntry.closed_at.is_(None),
            )
            .first()
        )

    def list_entries(
        self,
        tenant_id: int,
        pipeline_id: int | None = None,
        entity_type: EntityType | str | None = None,
        entity_id: str | None = None,
        current_stage: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[PipelineEntry], int]:
        query = self.db.query(PipelineEntry).filter(
            PipelineEntry.tenant_id == tenant_id, PipelineEntry.deleted_at.is_(None)
        )
        if pipeline_id is not None:
            query = query.filter(PipelineEntry.pipeline_id == pipeline_id)
        if entity_type is not None:
            query = query.filter(PipelineEntry.entity_type == coerce_entity_type(entity_type))
        if entity_id is not None:
            query = query.filter(PipelineEntry.entity_id == entity_id)
        if current_stage is not None:
            query = query.filter(PipelineEntry.current_stage == current_stage)
        total = query.count()
        items = (
            query.order_by(PipelineEntry.created_at.desc(), PipelineEntry.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def definition_for(self, tenant_id: int, entry_id: int) -> PipelineDefinition:
        pipeline_id = (
            self.db.query(PipelineEntry.pipeline_id)
            .filter(PipelineEntry.id == entry_id, PipelineEntry.tenant_id == tenant_id)
            .scalar()
        )
        if pipeline_id is None:
            raise EntryNotFoundError(f"Pipeline entry {entry_id} not found")
        return self.pipelines.get_definition(tenant_id, pipeline_id)

    # Mutation primitive

    def mutate_entry(self, tenant_id: int, entry_id: int, mutator: Callable[[PipelineEntry], T]) -> tuple[PipelineEntry, T]:
        """Apply ``mutator`` to a fresh copy of the entry and commit it.

        ``mutator`` validates before it writes; any engine error it raises
        aborts the operation with nothing persisted. A stale revision replays
        the mutation up to ``ENTRY_MUTATION_RETRIES`` times.
        """
        retries = get_config().ENTRY_MUTATION_RETRIES
        with self.locks.hold(entry_id):
            for attempt in range(retries + 1):
                entry = self._load(tenant_id, entry_id)
                try:
                    result = mutator(entry)
                except PipelineEngineError:
                    self.rollback()
                    raise
                try:
                    self.commit()
                except StaleDataError:
                    logger.warning(
                        "entry.mutation.stale",
                        extra={
                            "event": "entry.mutation.stale",
                            "tenant_id": tenant_id,
                            "entry_id": entry_id,
                            "attempt": attempt,
                        },
                    )
                    continue
                except IntegrityError as exc:
                    raise DuplicateEntryError(
                        "Another open entry already exists for this entity in the pipeline"
                    ) from exc
                return entry, result
        raise ConcurrentModificationError(f"Pipeline entry {entry_id} kept changing; gave up after {retries + 1} attempts")

    def _apply_position(
        self,
        entry: PipelineEntry,
        definition: PipelineDefinition,
        stage: Stage,
        status: StageStatus,
        now: datetime,
        percentage_complete: float | None = None,
    ) -> None:
        entry.previous_stage = entry.current_stage
        entry.current_stage = stage.id
        if percentage_complete is None:
            entry.progress = stage_progress_fraction(definition, stage.id)
        else:
            entry.progress = percentage_complete / 100
        entry.percentage_complete = entry.progress * 100
        entry.stage_status = status
        entry.moved_at = now
        entry.sla_deadline = compute_sla_deadline(definition, stage, now)
        entry.estimated_completion = estimate_completion(definition, stage.id, now)
        entry.closed_at = now if status in TERMINAL_STATUSES else None

    def transition_to_stage(
        self,
        tenant_id: int,
        entry_id: int,
        target_stage: str,
        *,
        actor: str | None = None,
        reason: str | None = None,
        data: dict[str, Any] | None = None,
        machine: StateMachine = ENTRY_STATUS_MACHINE,
        event_type: JourneyEventType = JourneyEventType.STAGE_CHANGED,
        event_data: dict[str, Any] | None = None,
        status: StageStatus | None = None,
        percentage_complete: float | None = None,
        triggered_by_type: TriggeredByType = TriggeredByType.USER,
        action: str = "moved",
    ) -> TransitionResult:
        """Move an entry to ``target_stage``, journal it, then run the stage's automations.

        Normal moves and operator overrides share this path; they differ only
        in the status machine consulted and the journal event written.
        """
        definition = self.definition_for(tenant_id, entry_id)
        stage = definition.get_stage(target_stage)
        if stage is None:
            raise UnknownStageError(f"Stage {target_stage} is not part of pipeline {definition.id}")
        target_status = status or (
            StageStatus.COMPLETED if definition.is_last_stage(stage.id) else StageStatus.IN_PROGRESS
        )
        reason = optional_text(reason)

        def apply(entry: PipelineEntry) -> JourneyEvent:
            machine.assert_transition(entry.stage_status, target_status)
            from_stage = entry.current_stage
            now = utcnow()
            self._apply_position(entry, definition, stage, target_status, now, percentage_complete)
            entry.moved_by = actor
            entry.move_reason = reason
            if data is not None:
                entry.data = dict(data)
            payload = {"progress": entry.progress, "percentage_complete": entry.percentage_complete}
            if reason:
                payload["reason"] = reason
            payload.update(event_data or {})
            return self.journey.append(
                entry,
                event_type,
                description=reason or f"Moved to {stage.name}",
                from_stage=from_stage,
                to_stage=stage.id,
                triggered_by=actor,
                triggered_by_type=triggered_by_type,
                event_data=payload,
            )

        entry, event = self.mutate_entry(tenant_id, entry_id, apply)
        event_view = JourneyEventView.model_validate(event)
        logger.info(
            "entry.moved",
            extra={
                "event": "entry.moved",
                "tenant_id": tenant_id,
                "pipeline_id": definition.id,
                "entry_id": entry_id,
                "stage_id": stage.id,
                "actor": actor,
            },
        )
        entry_view = EntryView.model_validate(entry)
        report = self.run_automations(tenant_id, definition, entry, stage, stage_changed=True)
        return TransitionResult(action=action, entry=entry_view, event=event_view, automation=report)

    # Operations

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
        triggered_by_type: TriggeredByType = TriggeredByType.USER,
    ) -> TransitionResult:
        resolved_type = coerce_entity_type(entity_type)
        definition = self.pipelines.get_definition(tenant_id, pipeline_id)
        if not definition.is_active:
            raise ValidationError(f"Pipeline {pipeline_id} is not active")
        stage = definition.get_stage(start_stage) if start_stage is not None else definition.first_stage
        if stage is None:
            raise UnknownStageError(f"Stage {start_stage} is not part of pipeline {pipeline_id}")

        entity: Any = _UNRESOLVED
        if self.collaborators is not None:
            entity = self.collaborators.entities.lookup(resolved_type, entity_id)

        duplicate_message = f"{resolved_type.value} {entity_id} already has an open entry in pipeline {pipeline_id}"
        if self.find_open_entry(tenant_id, pipeline_id, resolved_type, entity_id) is not None:
            raise DuplicateEntryError(duplicate_message)

        now = utcnow()
        entry = PipelineEntry(
            tenant_id=tenant_id,
            pipeline_id=pipeline_id,
            entity_type=resolved_type,
            entity_id=entity_id,
            current_stage=stage.id,
            stage_status=StageStatus.NOT_STARTED,
            progress=0.0,
            percentage_complete=0.0,
            entered_at=now,
            moved_by=actor,
            sla_deadline=compute_sla_deadline(definition, stage, now),
            sla_breached=False,
            estimated_completion=estimate_completion(definition, stage.id, now),
            notes=optional_text(notes),
            data=dict(data) if data is not None else None,
        )
        try:
            self.db.add(entry)
            self.db.flush()
            event = self.journey.append(
                entry,
                JourneyEventType.ENROLLED,
                description=f"Enrolled at {stage.name}",
                to_stage=stage.id,
                triggered_by=actor,
                triggered_by_type=triggered_by_type,
            )
            self.commit()
        except IntegrityError as exc:
            self.rollback()
            raise DuplicateEntryError(duplicate_message) from exc

        logger.info(
            "entry.enrolled",
            extra={
                "event": "entry.enrolled",
                "tenant_id": tenant_id,
                "pipeline_id": pipeline_id,
                "entry_id": entry.id,
                "stage_id": stage.id,
                "actor": actor,
            },
        )
        event_view = JourneyEventView.model_validate(event)
        entry_view = EntryView.model_validate(entry)
        report = self.run_automations(tenant_id, definition, entry, stage, entity=entity, stage_changed=False)
        return TransitionResult(action="enrolled", entry=entry_view, event=event_view, automation=report)

    def move_to_stage(
        self,
        tenant_id: int,
        entry_id: int,
        target_stage: str,
        reason: str | None = None,
        actor: str | None = None,
        data: dict[str, Any] | None = None,
        triggered_by_type: TriggeredByType = TriggeredByType.USER,
    ) -> TransitionResult:
        return self.transition_to_stage(
            tenant_id,
            entry_id,
            target_stage,
            actor=actor,
            reason=reason,
            data=data,
            triggered_by_type=triggered_by_type,
        )

    def update_progress(
        self,
        tenant_id: int,
        entry_id: int,
        progress: float | None = None,
        percentage_complete: float | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        request = parse_payload(
            ProgressUpdateRequest, {"progress": progress, "percentage_complete": percentage_complete}
        )
        new_progress, new_percentage = request.resolved()

        def apply(entry: PipelineEntry) -> None:
            if entry.is_closed:
                raise EntryTerminalError(f"Pipeline entry {entry_id} is {entry.stage_status.value}")
            entry.progress = new_progress
            entry.percentage_complete = new_percentage

        entry, _ = self.mutate_entry(tenant_id, entry_id, apply)
        logger.info(
            "entry.progress_updated",
            extra={"event": "entry.progress_updated", "tenant_id": tenant_id, "entry_id": entry_id, "actor": actor},
        )
        return TransitionResult(action="progress updated", entry=EntryView.model_validate(entry))

    def add_note(self, tenant_id: int, entry_id: int, note: str, actor: str) -> TransitionResult:
        text = sanitize_text(note)
        if not text:
            raise ValidationError("note must not be empty")
        if not sanitize_text(actor):
            raise ValidationError("actor is required")

        def apply(entry: PipelineEntry) -> JourneyEvent:
            entry.notes = text
            return self.journey.append(
                entry,
                JourneyEventType.MANUAL_OVERRIDE,
                event_name="Note Added",
                description=text,
                from_stage=entry.current_stage,
                to_stage=entry.current_stage,
                triggered_by=actor,
                event_data={"kind": "NOTE", "note": text},
            )

        entry, event = self.mutate_entry(tenant_id, entry_id, apply)
        return TransitionResult(
            action="note added", entry=EntryView.model_validate(entry), event=JourneyEventView.model_validate(event)
        )

    def _close(
        self,
        tenant_id: int,
        entry_id: int,
        status: StageStatus,
        event_type: JourneyEventType,
        actor: str | None,
        reason: str | None,
    ) -> TransitionResult:
        reason = optional_text(reason)

        def apply(entry: PipelineEntry) -> JourneyEvent:
            ENTRY_STATUS_MACHINE.assert_transition(entry.stage_status, status)
            now = utcnow()
            entry.stage_status = status
            entry.closed_at = now
            entry.moved_at = now
            entry.moved_by = actor
            entry.move_reason = reason
            if status == StageStatus.COMPLETED:
                entry.progress = 1.0
                entry.percentage_complete = 100.0
            return self.journey.append(
                entry,
                event_type,
                description=reason,
                from_stage=entry.current_stage,
                to_stage=entry.current_stage,
                triggered_by=actor,
                event_data={"reason": reason} if reason else None,
            )

        entry, event = self.mutate_entry(tenant_id, entry_id, apply)
        logger.info(
            f"entry.{status.value.lower()}",
            extra={"event": f"entry.{status.value.lower()}", "tenant_id": tenant_id, "entry_id": entry_id, "actor": actor},
        )
        return TransitionResult(
            action=status.value.lower(), entry=EntryView.model_validate(entry), event=JourneyEventView.model_validate(event)
        )

    def complete(self, tenant_id: int, entry_id: int, actor: str | None = None, reason: str | None = None) -> TransitionResult:
        return self._close(tenant_id, entry_id, StageStatus.COMPLETED, JourneyEventType.COMPLETED, actor, reason)

    def cancel(self, tenant_id: int, entry_id: int, actor: str | None = None, reason: str | None = None) -> TransitionResult:
        return self._close(tenant_id, entry_id, StageStatus.CANCELLED, JourneyEventType.CANCELLED, actor, reason)

    def extend_sla(
        self,
        tenant_id: int,
        entry_id: int,
        new_deadline: datetime,
        actor: str,
        reason: str,
        event_data: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Replace the SLA deadline and clear the breach flag; stage and progress are untouched."""
        deadline = as_utc(new_deadline)

        def apply(entry: PipelineEntry) -> JourneyEvent:
            if entry.is_closed:
                raise EntryTerminalError(f"Pipeline entry {entry_id} is {entry.stage_status.value}")
            previous = as_utc(entry.sla_deadline)
            entry.sla_deadline = deadline
            entry.sla_breached = False
            payload = {"previous_deadline": previous.isoformat() if previous else None}
            payload.update(event_data or {})
            return self.journey.append(
                entry,
                JourneyEventType.MANUAL_OVERRIDE,
                description=reason,
                from_stage=entry.current_stage,
                to_stage=entry.current_stage,
                triggered_by=actor,
                event_data=payload,
                sla_impact=True,
            )

        entry, event = self.mutate_entry(tenant_id, entry_id, apply)
        return TransitionResult(
            action="sla extended", entry=EntryView.model_validate(entry), event=JourneyEventView.model_validate(event)
        )

    def record_event(
        self, tenant_id: int, entry_id: int, request: JourneyEventRequest | dict[str, Any]
    ) -> TransitionResult:
        """Append a milestone event; a ``STAGE_CHANGED`` request is routed through a normal move."""
        payload = parse_payload(JourneyEventRequest, request)
        if payload.event_type == JourneyEventType.STAGE_CHANGED:
            return self.move_to_stage(
                tenant_id,
                entry_id,
                payload.to_stage,
                reason=payload.description,
                actor=payload.triggered_by,
                triggered_by_type=payload.triggered_by_type,
            )
        if payload.event_type in ENGINE_EVENT_TYPES:
            raise ValidationError(f"{payload.event_type.value} events are written by the engine only")

        with self.locks.hold(entry_id):
            entry = self._load(tenant_id, entry_id)
            event = self.journey.append(
                entry,
                payload.event_type,
                event_name=payload.event_name,
                description=payload.description,
                from_stage=entry.current_stage,
                to_stage=payload.to_stage or entry.current_stage,
                triggered_by=payload.triggered_by,
                triggered_by_type=payload.triggered_by_type,
                event_data=payload.event_data,
                sla_impact=payload.sla_impact,
            )
            self.commit()
        return TransitionResult(
            action="event recorded", entry=EntryView.model_validate(entry), event=JourneyEventView.model_validate(event)
        )

    # Automations

    def run_automations(
        self,
        tenant_id: int,
        definition: PipelineDefinition,
        entry: PipelineEntry,
        stage: Stage,
        entity: Any = _UNRESOLVED,
        stage_changed: bool = True,
    ) -> AutomationReport | None:
        """Run ``stage``'s automations for an already committed transition.

        An entity that cannot be resolved is passed as ``None``; actions that
        need its fields then fail individually.
        """
        if self.executor is None:
            return None
        if entity is _UNRESOLVED:
            entity = self._resolve_entity(entry)
        context = AutomationContext(
            tenant_id=tenant_id,
            definition=definition,
            stage=stage,
            entry_id=entry.id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            entity=entity,
            stage_changed=stage_changed,
            progress=entry.progress,
        )
        report = self.executor.run(context)
        if report.attempted:
            with self.locks.hold(entry.id):
                try:
                    self.journey.append(
                        entry,
                        JourneyEventType.AUTO_ACTION_TRIGGERED,
                        description=report.summary(),
                        to_stage=stage.id,
                        triggered_by_type=TriggeredByType.AUTOMATION,
                        event_data=report.to_payload(),
                    )
                    self.commit()
                except SQLAlchemyError:
                    self.rollback()
                    logger.exception(
                        "automation.journal.failed",
                        extra={
                            "event": "automation.journal.failed",
                            "tenant_id": tenant_id,
                            "entry_id": context.entry_id,
                            "stage_id": stage.id,
                            "attempted": report.attempted,
                            "failed": report.failed,
                        },
                    )
        return report

    def _resolve_entity(self, entry: PipelineEntry) -> Mapping[str, Any] | None:
        try:
            return self.collaborators.entities.lookup(entry.entity_type, entry.entity_id)
        except (EntityNotFoundError, ValidationError) as exc:
            logger.warning(
                "automation.entity.unresolved",
                extra={
                    "event": "automation.entity.unresolved",
                    "tenant_id": entry.tenant_id,
                    "entry_id": entry.id,
                    "error": str(exc),
                },
            )
            return None
