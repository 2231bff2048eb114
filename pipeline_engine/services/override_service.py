"""Operator overrides expressed through the entry transition primitives."""

from __future__ import annotations

import logging
from typing import Any

from pipeline_engine.core.exceptions import ValidationError
from pipeline_engine.models.enums import JourneyEventType, OverrideKind, StageStatus
from pipeline_engine.orchestration.state_machine import OVERRIDE_STATUS_MACHINE
from pipeline_engine.schemas.entries import ManualOverrideRequest, parse_payload
from pipeline_engine.services.entry_service import EntryService, TransitionResult

logger = logging.getLogger(__name__)


class OverrideService:
    """Applies FAST_FORWARD, ROLLBACK and EXTEND_SLA to an entry.

    Each kind writes exactly one ``MANUAL_OVERRIDE`` journey event carrying
    the override kind and its payload.
    """

    def __init__(self, entries: EntryService) -> None:
        self.entries = entries

    def apply(self, tenant_id: int, entry_id: int, request: ManualOverrideRequest | dict[str, Any]) -> TransitionResult:
        payload = parse_payload(ManualOverrideRequest, request)
        logger.info(
            "entry.override.requested",
            extra={
                "event": "entry.override.requested",
                "tenant_id": tenant_id,
                "entry_id": entry_id,
                "actor": payload.actor,
                "kind": payload.kind.value,
            },
        )
        if payload.kind == OverrideKind.FAST_FORWARD:
            return self._fast_forward(tenant_id, entry_id, payload)
        if payload.kind == OverrideKind.ROLLBACK:
            return self._rollback(tenant_id, entry_id, payload)
        if payload.kind == OverrideKind.EXTEND_SLA:
            return self.entries.extend_sla(
                tenant_id,
                entry_id,
                new_deadline=payload.new_deadline,
                actor=payload.actor,
                reason=payload.reason,
                event_data=payload.payload(),
            )
        raise ValidationError(f"Unsupported override kind: {payload.kind}")

    def _fast_forward(self, tenant_id: int, entry_id: int, payload: ManualOverrideRequest) -> TransitionResult:
        definition = self.entries.definition_for(tenant_id, entry_id)
        return self.entries.transition_to_stage(
            tenant_id,
            entry_id,
            definition.last_stage.id,
            actor=payload.actor,
            reason=payload.reason,
            machine=OVERRIDE_STATUS_MACHINE,
            event_type=JourneyEventType.MANUAL_OVERRIDE,
            event_data=payload.payload(),
            status=StageStatus.COMPLETED,
            percentage_complete=100.0,
            action="fast-forwarded",
        )

    def _rollback(self, tenant_id: int, entry_id: int, payload: ManualOverrideRequest) -> TransitionResult:
        return self.entries.transition_to_stage(
            tenant_id,
            entry_id,
            payload.to_stage,
            actor=payload.actor,
            reason=payload.reason,
            machine=OVERRIDE_STATUS_MACHINE,
            event_type=JourneyEventType.MANUAL_OVERRIDE,
            event_data=payload.payload(),
            percentage_complete=payload.percentage_complete,
            action="rolled back",
        )
