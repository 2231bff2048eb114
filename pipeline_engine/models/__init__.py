"""SQLAlchemy model package for the tenant-aware pipeline engine schema."""

from pipeline_engine.models.assignment_counter import AssignmentCounter
from pipeline_engine.models.base import Base
from pipeline_engine.models.enums import (
    ActionCategory,
    ActionStatus,
    EntityType,
    JourneyEventType,
    OverrideKind,
    PipelineType,
    StageProgressStatus,
    StageStatus,
    TriggeredByType,
)
from pipeline_engine.models.journey_event import JourneyEvent
from pipeline_engine.models.pipeline import Pipeline
from pipeline_engine.models.pipeline_entry import PipelineEntry
from pipeline_engine.models.tenant import Tenant

__all__ = [
    "ActionCategory",
    "ActionStatus",
    "AssignmentCounter",
    "Base",
    "EntityType",
    "JourneyEvent",
    "JourneyEventType",
    "OverrideKind",
    "Pipeline",
    "PipelineEntry",
    "PipelineType",
    "StageProgressStatus",
    "StageStatus",
    "Tenant",
    "TriggeredByType",
]
