from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from pydantic import ValidationError as PydanticValidationError

from pipeline_engine.core.exceptions import ValidationError
from pipeline_engine.models.enums import JourneyEventType, OverrideKind
from pipeline_engine.schemas.entries import (
    JourneyEventRequest,
    ManualOverrideRequest,
    ProgressUpdateRequest,
    parse_payload,
)
from pipeline_engine.schemas.pipeline import PipelineCreateRequest, PipelineDefinition


def _stages(*ids: str) -> list[dict]:
    return [{"id": stage_id, "name": stage_id.title(), "duration_days": 1} for stage_id in ids]


def test_pipeline_requires_at_least_one_stage():
    with pytest.raises(PydanticValidationError):
        PipelineCreateRequest.model_validate({"name": "Empty", "stages": []})


def test_pipeline_rejects_duplicate_stage_ids():
    with pytest.raises(PydanticValidationError, match="duplicate stage id: a"):
        PipelineCreateRequest.model_validate({"name": "Dup", "stages": _stages("a", "b", "a")})


def test_stage_rejects_negative_duration():
    with pytest.raises(PydanticValidationError):
        PipelineCreateRequest.model_validate(
            {"name": "Bad", "stages": [{"id": "a", "name": "A", "duration_days": -1}]}
        )


def test_entity_update_must_set_a_field():
    with pytest.raises(PydanticValidationError, match="at least one field"):
        PipelineCreateRequest.model_validate(
            {"name": "Bad", "stages": [{"id": "a", "name": "A", "automation": {"entity_updates": [{}]}}]}
        )


def test_definition_lookup_helpers():
    definition = PipelineDefinition.model_validate({"id": 4, "tenant_id": 1, "name": "P", "stages": _stages("a", "b", "c")})

    assert definition.total_stages == 3
    assert definition.first_stage.id == "a"
    assert definition.last_stage.id == "c"
    assert definition.stage_index("b") == 1
    assert definition.stage_index("zzz") == -1
    assert definition.get_stage("zzz") is None
    assert definition.is_last_stage("c")
    assert definition.total_duration_days == 3


def test_definition_is_frozen():
    definition = PipelineDefinition.model_validate({"id": 4, "tenant_id": 1, "name": "P", "stages": _stages("a")})

    with pytest.raises(PydanticValidationError):
        definition.name = "Renamed"


def test_definition_from_record_reads_stored_json():
    record = SimpleNamespace(
        id=9,
        tenant_id=2,
        name="Lead Conversion",
        description=None,
        type="LEAD_CONVERSION",
        enable_sla=False,
        enable_auto_actions=True,
        is_active=True,
        version=3,
        stages=_stages("new", "qualified"),
    )

    definition = PipelineDefinition.from_record(record)

    assert definition.version == 3
    assert definition.enable_sla is False
    assert [stage.id for stage in definition.stages] == ["new", "qualified"]


def test_rollback_override_requires_target_and_percentage():
    with pytest.raises(ValidationError, match="ROLLBACK requires to_stage"):
        parse_payload(ManualOverrideRequest, {"kind": "ROLLBACK", "reason": "wrong stage", "actor": "ops"})

    with pytest.raises(ValidationError, match="percentage_complete"):
        parse_payload(
            ManualOverrideRequest,
            {"kind": "ROLLBACK", "reason": "wrong stage", "actor": "ops", "to_stage": "a"},
        )


def test_extend_sla_override_requires_deadline():
    with pytest.raises(ValidationError, match="new_deadline"):
        parse_payload(ManualOverrideRequest, {"kind": "EXTEND_SLA", "reason": "embassy delay", "actor": "ops"})


def test_override_reason_must_be_meaningful():
    with pytest.raises(ValidationError):
        parse_payload(ManualOverrideRequest, {"kind": "FAST_FORWARD", "reason": "ok", "actor": "ops"})


def test_override_payload_records_kind_specific_fields():
    deadline = datetime(2026, 5, 1, tzinfo=timezone.utc)
    request = ManualOverrideRequest(
        kind=OverrideKind.EXTEND_SLA, reason="embassy delay", actor="ops", new_deadline=deadline
    )

    assert request.payload() == {
        "kind": "EXTEND_SLA",
        "reason": "embassy delay",
        "new_deadline": deadline.isoformat(),
    }


def test_progress_update_derives_percentage_from_progress():
    assert ProgressUpdateRequest(progress=0.25).resolved() == (0.25, 25.0)
    assert ProgressUpdateRequest(percentage_complete=50).resolved() == (0.5, 50.0)


def test_progress_update_rejects_inconsistent_or_missing_values():
    with pytest.raises(ValidationError, match="disagree"):
        parse_payload(ProgressUpdateRequest, {"progress": 0.5, "percentage_complete": 60})
    with pytest.raises(ValidationError, match="required"):
        parse_payload(ProgressUpdateRequest, {})
    with pytest.raises(ValidationError):
        parse_payload(ProgressUpdateRequest, {"progress": 1.5})


def test_stage_changed_event_request_needs_target():
    with pytest.raises(ValidationError, match="to_stage"):
        parse_payload(JourneyEventRequest, {"event_type": "STAGE_CHANGED"})

    request = parse_payload(JourneyEventRequest, {"event_type": "FEE_PAID", "event_data": {"amount": 250}})
    assert request.event_type == JourneyEventType.FEE_PAID


def test_parse_payload_passes_model_instances_through():
    request = ProgressUpdateRequest(progress=0.1)

    assert parse_payload(ProgressUpdateRequest, request) is request
