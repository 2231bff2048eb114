"""Typed stage graph and pipeline definition schemas.

Stored pipelines keep their stages as JSON; these models are the only place
that JSON is interpreted. A ``PipelineDefinition`` is frozen: a new version
of the pipeline produces a new definition object.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pipeline_engine.models.enums import PipelineType


class TaskTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str | None = Field(default=None, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    type: str = "GENERAL"
    category: str = "PIPELINE"
    priority: str = "MEDIUM"
    assigned_to: str | None = None
    assignee_pool: tuple[str, ...] = ()
    due_date: datetime | None = None
    due_in_days: int | None = Field(default=None, ge=0)


class NotificationTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str = "INFO"
    title: str | None = Field(default=None, max_length=255)
    message: str | None = Field(default=None, max_length=5000)
    recipient_id: str | None = None
    recipient_type: str = "USER"
    channel: str = "IN_APP"
    priority: str = "MEDIUM"


class EmailTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str = Field(min_length=1, max_length=500)
    body: str = Field(min_length=1)
    to: str | None = None


class SmsTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = Field(min_length=1, max_length=1600)
    to: str | None = None


class AutomationRuleSet(BaseModel):
    """Actions executed when an entry enters the owning stage."""

    model_config = ConfigDict(frozen=True)

    tasks: tuple[TaskTemplate, ...] = ()
    notifications: tuple[NotificationTemplate, ...] = ()
    emails: tuple[EmailTemplate, ...] = ()
    sms: tuple[SmsTemplate, ...] = ()
    entity_updates: tuple[dict[str, Any], ...] = ()

    @property
    def action_count(self) -> int:
        return (
            len(self.tasks)
            + len(self.notifications)
            + len(self.emails)
            + len(self.sms)
            + len(self.entity_updates)
        )

    @field_validator("entity_updates")
    @classmethod
    def entity_updates_are_not_empty(cls, value: tuple[dict[str, Any], ...]) -> tuple[dict[str, Any], ...]:
        for fields in value:
            if not fields:
                raise ValueError("entity update must set at least one field")
        return value


class Stage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, max_length=120)
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    order: int | None = Field(default=None, ge=0)
    color: str | None = None
    duration_days: int = Field(default=0, ge=0)
    requirements: tuple[Any, ...] = ()
    automation: AutomationRuleSet | None = None


def _validate_stage_list(stages: tuple[Stage, ...]) -> tuple[Stage, ...]:
    seen: set[str] = set()
    for stage in stages:
        if stage.id in seen:
            raise ValueError(f"duplicate stage id: {stage.id}")
        seen.add(stage.id)
    return stages


class PipelineDefinition(BaseModel):
    """Immutable, strongly typed view of one pipeline version."""

    model_config = ConfigDict(frozen=True)

    id: int
    tenant_id: int
    name: str
    description: str | None = None
    type: PipelineType = PipelineType.GENERAL
    enable_sla: bool = True
    enable_auto_actions: bool = True
    is_active: bool = True
    version: int = 1
    stages: tuple[Stage, ...] = Field(min_length=1)

    @field_validator("stages")
    @classmethod
    def stages_are_unique(cls, value: tuple[Stage, ...]) -> tuple[Stage, ...]:
        return _validate_stage_list(value)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def first_stage(self) -> Stage:
        return self.stages[0]

    @property
    def last_stage(self) -> Stage:
        return self.stages[-1]

    @property
    def total_duration_days(self) -> int:
        return sum(stage.duration_days for stage in self.stages)

    def stage_index(self, stage_id: str | None) -> int:
        """Position of ``stage_id``, or -1 when the stage is not in this version."""
        for index, stage in enumerate(self.stages):
            if stage.id == stage_id:
                return index
        return -1

    def get_stage(self, stage_id: str | None) -> Stage | None:
        index = self.stage_index(stage_id)
        return self.stages[index] if index >= 0 else None

    def is_last_stage(self, stage_id: str) -> bool:
        return self.last_stage.id == stage_id

    @classmethod
    def from_record(cls, record: Any) -> "PipelineDefinition":
        return cls.model_validate(
            {
                "id": record.id,
                "tenant_id": record.tenant_id,
                "name": record.name,
                "description": record.description,
                "type": record.type,
                "enable_sla": record.enable_sla,
                "enable_auto_actions": record.enable_auto_actions,
                "is_active": record.is_active,
                "version": record.version,
                "stages": record.stages or [],
            }
        )


class PipelineCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    type: PipelineType = PipelineType.GENERAL
    category: str = Field(default="GENERAL", max_length=50)
    stages: tuple[Stage, ...] = Field(min_length=1)
    enable_sla: bool = True
    enable_auto_actions: bool = True
    is_active: bool = True
    is_default: bool = False

    @field_validator("stages")
    @classmethod
    def stages_are_unique(cls, value: tuple[Stage, ...]) -> tuple[Stage, ...]:
        return _validate_stage_list(value)


class PipelineUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    category: str | None = Field(default=None, max_length=50)
    stages: tuple[Stage, ...] | None = Field(default=None, min_length=1)
    enable_sla: bool | None = None
    enable_auto_actions: bool | None = None
    is_active: bool | None = None
    is_default: bool | None = None

    @field_validator("stages")
    @classmethod
    def stages_are_unique(cls, value: tuple[Stage, ...] | None) -> tuple[Stage, ...] | None:
        if value is None:
            return value
        return _validate_stage_list(value)
