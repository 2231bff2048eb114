"""Progress read model schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pipeline_engine.models.base import as_utc
from pipeline_engine.models.enums import (
    EntityType,
    JourneyEventType,
    PipelineType,
    StageProgressStatus,
    StageStatus,
    TriggeredByType,
)


class StageSLA(BaseModel):
    deadline: datetime | None = None
    days_remaining: int | None = None
    is_overdue: bool = False
    progress: float = 0.0


class StageProgress(BaseModel):
    id: str
    name: str
    description: str = ""
    index: int
    duration_days: int = 0
    requirements: list[Any] = Field(default_factory=list)
    status: StageProgressStatus
    is_active: bool = False
    progress: float = 0.0
    sla: StageSLA = Field(default_factory=StageSLA)


class SLASummary(BaseModel):
    deadline: datetime | None = None
    is_breached: bool = False
    days_remaining: int | None = None
    is_overdue: bool = False
    total_days: int = 0


class NextStep(BaseModel):
    stage_id: str
    stage: str
    description: str = ""
    requirements: list[Any] = Field(default_factory=list)
    estimated_duration: int = 0


class ProgressSnapshot(BaseModel):
    """Pure calculator output; recomputed on every call."""

    current_stage_index: int
    total_stages: int
    overall_progress: int
    stages: list[StageProgress]
    sla: SLASummary
    next_steps: list[NextStep] = Field(default_factory=list)


class EntryView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    pipeline_id: int
    entity_type: EntityType
    entity_id: str
    current_stage: str
    previous_stage: str | None = None
    stage_status: StageStatus
    progress: float
    percentage_complete: float
    entered_at: datetime
    moved_at: datetime | None = None
    moved_by: str | None = None
    move_reason: str | None = None
    estimated_completion: datetime | None = None
    sla_deadline: datetime | None = None
    sla_breached: bool = False
    notes: str | None = None
    data: dict[str, Any] | None = None
    closed_at: datetime | None = None
    revision: int

    @field_validator("entered_at", "moved_at", "estimated_completion", "sla_deadline", "closed_at")
    @classmethod
    def normalise_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class JourneyEventView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pipeline_entry_id: int
    event_type: JourneyEventType
    event_name: str
    description: str | None = None
    from_stage: str | None = None
    to_stage: str | None = None
    triggered_by: str | None = None
    triggered_by_type: TriggeredByType
    event_data: dict[str, Any] | None = None
    sla_impact: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalise_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def stage(self) -> str | None:
        return self.to_stage or self.from_stage


class PipelineSummary(BaseModel):
    id: int
    name: str
    description: str | None = None
    type: PipelineType
    enable_sla: bool
    enable_auto_actions: bool
    version: int


class ProgressView(BaseModel):
    """Entry, per-stage progress, SLA figures and the most recent journey events."""

    entry: EntryView
    pipeline: PipelineSummary
    stages: list[StageProgress]
    overall_progress: int
    sla: SLASummary
    next_steps: list[NextStep]
    recent_events: list[JourneyEventView]
