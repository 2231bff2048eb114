"""Pydantic schema package for stage graphs, payloads and read models."""

from pipeline_engine.schemas.entries import (
    JourneyEventRequest,
    ManualOverrideRequest,
    ProgressUpdateRequest,
    parse_payload,
)
from pipeline_engine.schemas.pipeline import (
    AutomationRuleSet,
    EmailTemplate,
    NotificationTemplate,
    PipelineCreateRequest,
    PipelineDefinition,
    PipelineUpdateRequest,
    SmsTemplate,
    Stage,
    TaskTemplate,
)
from pipeline_engine.schemas.progress import (
    EntryView,
    JourneyEventView,
    NextStep,
    PipelineSummary,
    ProgressSnapshot,
    ProgressView,
    SLASummary,
    StageProgress,
    StageSLA,
)

__all__ = [
    "AutomationRuleSet",
    "EmailTemplate",
    "EntryView",
    "JourneyEventRequest",
    "JourneyEventView",
    "ManualOverrideRequest",
    "NextStep",
    "NotificationTemplate",
    "PipelineCreateRequest",
    "PipelineDefinition",
    "PipelineSummary",
    "PipelineUpdateRequest",
    "ProgressSnapshot",
    "ProgressUpdateRequest",
    "ProgressView",
    "SLASummary",
    "SmsTemplate",
    "Stage",
    "StageProgress",
    "StageSLA",
    "TaskTemplate",
    "parse_payload",
]
