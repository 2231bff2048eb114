"""Entry mutation payload schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from pipeline_engine.core.exceptions import ValidationError
from pipeline_engine.models.enums import JourneyEventType, OverrideKind, TriggeredByType

# Allowed drift between progress * 100 and an explicit percentage.
PERCENTAGE_TOLERANCE = 0.01


class ManualOverrideRequest(BaseModel):
    kind: OverrideKind
    reason: str = Field(min_length=3, max_length=2000)
    actor: str = Field(min_length=1, max_length=120)
    to_stage: str | None = Field(default=None, min_length=1, max_length=120)
    percentage_complete: float | None = Field(default=None, ge=0, le=100)
    new_deadline: datetime | None = None

    @model_validator(mode="after")
    def kind_payload_is_complete(self) -> "ManualOverrideRequest":
        if self.kind == OverrideKind.ROLLBACK:
            if self.to_stage is None:
                raise ValueError("ROLLBACK requires to_stage")
            if self.percentage_complete is None:
                raise ValueError("ROLLBACK requires percentage_complete")
        if self.kind == OverrideKind.EXTEND_SLA and self.new_deadline is None:
            raise ValueError("EXTEND_SLA requires new_deadline")
        return self

    def payload(self) -> dict[str, Any]:
        """Kind-specific fields recorded on the override journey event."""
        data: dict[str, Any] = {"kind": self.kind.value, "reason": self.reason}
        if self.to_stage is not None:
            data["to_stage"] = self.to_stage
        if self.percentage_complete is not None:
            data["percentage_complete"] = self.percentage_complete
        if self.new_deadline is not None:
            data["new_deadline"] = self.new_deadline.isoformat()
        return data


class ProgressUpdateRequest(BaseModel):
    progress: float | None = Field(default=None, ge=0, le=1)
    percentage_complete: float | None = Field(default=None, ge=0, le=100)

    @model_validator(mode="after")
    def values_are_consistent(self) -> "ProgressUpdateRequest":
        if self.progress is None and self.percentage_complete is None:
            raise ValueError("progress or percentage_complete is required")
        if self.progress is not None and self.percentage_complete is not None:
            if abs(self.progress * 100 - self.percentage_complete) > PERCENTAGE_TOLERANCE:
                raise ValueError("progress and percentage_complete disagree")
        return self

    def resolved(self) -> tuple[float, float]:
        """Return ``(progress, percentage_complete)`` with the percentage derived from progress."""
        progress = self.progress if self.progress is not None else self.percentage_complete / 100
        return progress, progress * 100


class JourneyEventRequest(BaseModel):
    event_type: JourneyEventType
    event_name: str | None = Field(default=None, max_length=120)
    description: str | None = Field(default=None, max_length=5000)
    to_stage: str | None = Field(default=None, max_length=120)
    triggered_by: str | None = Field(default=None, max_length=120)
    triggered_by_type: TriggeredByType = TriggeredByType.USER
    event_data: dict[str, Any] | None = None
    sla_impact: bool = False

    @model_validator(mode="after")
    def stage_change_names_target(self) -> "JourneyEventRequest":
        if self.event_type == JourneyEventType.STAGE_CHANGED and not self.to_stage:
            raise ValueError("STAGE_CHANGED requires to_stage")
        return self


def parse_payload(model_cls: type[BaseModel], payload: Any) -> BaseModel:
    """Validate a payload, re-raising pydantic errors as the engine's ``ValidationError``."""
    if isinstance(payload, model_cls):
        return payload
    try:
        return model_cls.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc
