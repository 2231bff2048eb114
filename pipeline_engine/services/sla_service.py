"""Periodic SLA breach detection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from pipeline_engine.core.config import get_config
from pipeline_engine.models.base import as_utc, utcnow
from pipeline_engine.models.enums import EntityType, JourneyEventType, TriggeredByType
from pipeline_engine.models.pipeline import Pipeline
from pipeline_engine.models.pipeline_entry import PipelineEntry
from pipeline_engine.services.automation_executor import entity_assignee, entity_display_name
from pipeline_engine.services.base_service import BaseService
from pipeline_engine.services.interfaces import Collaborators
from pipeline_engine.services.journey_service import JourneyService

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    breached: int = 0
    notified: int = 0
    errors: int = 0
    breached_entry_ids: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, int | list[int]]:
        return {
            "scanned": self.scanned,
            "breached": self.breached,
            "notified": self.notified,
            "errors": self.errors,
            "breached_entry_ids": list(self.breached_entry_ids),
        }


class SlaSweepService(BaseService):
    """Flip ``sla_breached`` false to true for open entries past their deadline.

    The flag is set with a conditional UPDATE, so when sweeps overlap only one
    of them wins for a given entry and only the winner journals and notifies.
    The flag is never cleared here.
    """

    def __init__(self, db: Session | None = None, collaborators: Collaborators | None = None) -> None:
        super().__init__(db)
        self.collaborators = collaborators
        self.journey = JourneyService(self.db)

    def _candidate_ids(self, now: datetime, tenant_id: int | None, batch_size: int) -> list[int]:
        query = (
            self.db.query(PipelineEntry.id)
            .join(Pipeline, Pipeline.id == PipelineEntry.pipeline_id)
            .filter(
                Pipeline.enable_sla.is_(True),
                PipelineEntry.closed_at.is_(None),
                PipelineEntry.deleted_at.is_(None),
                PipelineEntry.sla_breached.is_(False),
                PipelineEntry.sla_deadline.is_not(None),
                PipelineEntry.sla_deadline < now,
            )
        )
        if tenant_id is not None:
            query = query.filter(PipelineEntry.tenant_id == tenant_id)
        return [row[0] for row in query.order_by(PipelineEntry.sla_deadline.asc()).limit(batch_size).all()]

    def sweep(self, tenant_id: int | None = None, now: datetime | None = None) -> SweepResult:
        config = get_config()
        current = as_utc(now) if now is not None else utcnow()
        result = SweepResult()
        candidate_ids = self._candidate_ids(current, tenant_id, config.SLA_SWEEP_BATCH_SIZE)
        self.rollback()
        for entry_id in candidate_ids:
            result.scanned += 1
            try:
                if self._mark_breached(entry_id, current):
                    result.breached += 1
                    result.breached_entry_ids.append(entry_id)
                    if self._notify(entry_id, current, config.SLA_ESCALATION_RECIPIENT):
                        result.notified += 1
            except Exception:
                self.rollback()
                result.errors += 1
                logger.exception(
                    "sla.sweep.entry_failed",
                    extra={"event": "sla.sweep.entry_failed", "entry_id": entry_id},
                )
        logger.info(
            "sla.sweep.complete",
            extra={"event": "sla.sweep.complete", "tenant_id": tenant_id, **result.to_dict()},
        )
        return result

    def _mark_breached(self, entry_id: int, now: datetime) -> bool:
        flipped = self.db.execute(
            update(PipelineEntry)
            .where(
                PipelineEntry.id == entry_id,
                PipelineEntry.sla_breached.is_(False),
                PipelineEntry.closed_at.is_(None),
                PipelineEntry.sla_deadline < now,
            )
            .values(sla_breached=True, revision=PipelineEntry.revision + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            self.rollback()
            return False

        entry = self.db.get(PipelineEntry, entry_id, populate_existing=True)
        self.journey.append(
            entry,
            JourneyEventType.SLA_BREACHED,
            description=f"SLA deadline {as_utc(entry.sla_deadline).isoformat()} passed at stage {entry.current_stage}",
            from_stage=entry.current_stage,
            to_stage=entry.current_stage,
            triggered_by="sla-sweep",
            triggered_by_type=TriggeredByType.SYSTEM,
            event_data={"sla_deadline": as_utc(entry.sla_deadline).isoformat(), "detected_at": now.isoformat()},
            sla_impact=True,
        )
        self.commit()
        logger.info(
            "sla.breached",
            extra={"event": "sla.breached", "tenant_id": entry.tenant_id, "entry_id": entry_id},
        )
        return True

    def _notify(self, entry_id: int, now: datetime, escalation_recipient: str) -> bool:
        """Tell the entity's assignee, or the escalation team, about the breach.

        Delivery failure is logged; the breach itself stays recorded.
        """
        if self.collaborators is None:
            return False
        entry = self.db.get(PipelineEntry, entry_id)
        entity = None
        try:
            entity = self.collaborators.entities.lookup(entry.entity_type, entry.entity_id)
        except Exception:
            logger.warning(
                "sla.breach.entity_unresolved",
                extra={"event": "sla.breach.entity_unresolved", "entry_id": entry_id},
            )
        recipient = entity_assignee(entity)
        recipient_type = "USER"
        if not recipient:
            recipient, recipient_type = escalation_recipient, "TEAM"
        name = entity_display_name(entity, EntityType(entry.entity_type), entry.entity_id)
        try:
            self.collaborators.notifications.notify(
                recipient,
                recipient_type,
                "IN_APP",
                "Pipeline SLA Breached",
                f"{name} has exceeded the SLA for stage {entry.current_stage}",
                {
                    "type": "WARNING",
                    "priority": "HIGH",
                    "pipeline_id": entry.pipeline_id,
                    "pipeline_entry_id": entry.id,
                    "stage_id": entry.current_stage,
                    "entity_type": EntityType(entry.entity_type).value,
                    "entity_id": entry.entity_id,
                    "sla_deadline": as_utc(entry.sla_deadline).isoformat(),
                    "detected_at": now.isoformat(),
                },
            )
        except Exception:
            logger.exception(
                "sla.breach.notify_failed",
                extra={"event": "sla.breach.notify_failed", "entry_id": entry_id},
            )
            return False
        return True
