"""Canonical enum values for pipelines, entries and journey events."""

from __future__ import annotations

import enum


class EntityType(str, enum.Enum):
    STUDENT = "STUDENT"
    LEAD = "LEAD"
    APPLICATION = "APPLICATION"


class PipelineType(str, enum.Enum):
    LEAD_CONVERSION = "LEAD_CONVERSION"
    STUDENT_ONBOARDING = "STUDENT_ONBOARDING"
    APPLICATION_PROCESSING = "APPLICATION_PROCESSING"
    VISA_PROCESSING = "VISA_PROCESSING"
    DOCUMENT_COLLECTION = "DOCUMENT_COLLECTION"
    GENERAL = "GENERAL"


class StageStatus(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class StageProgressStatus(str, enum.Enum):
    """Per-stage tag in the progress read model."""

    COMPLETED = "COMPLETED"
    ACTIVE = "ACTIVE"
    NOT_STARTED = "NOT_STARTED"


class JourneyEventType(str, enum.Enum):
    ENROLLED = "ENROLLED"
    STAGE_CHANGED = "STAGE_CHANGED"
    MANUAL_OVERRIDE = "MANUAL_OVERRIDE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    SLA_BREACHED = "SLA_BREACHED"
    AUTO_ACTION_TRIGGERED = "AUTO_ACTION_TRIGGERED"
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    FEE_PAID = "FEE_PAID"
    VISA_SUBMITTED = "VISA_SUBMITTED"
    OFFER_RECEIVED = "OFFER_RECEIVED"
    APPLICATION_FILED = "APPLICATION_FILED"
    MILESTONE_REACHED = "MILESTONE_REACHED"
    REMINDER_SENT = "REMINDER_SENT"
    ESCALATION_TRIGGERED = "ESCALATION_TRIGGERED"


# Event types the engine writes itself; record_event refuses them.
ENGINE_EVENT_TYPES = frozenset(
    {
        JourneyEventType.ENROLLED,
        JourneyEventType.MANUAL_OVERRIDE,
        JourneyEventType.COMPLETED,
        JourneyEventType.CANCELLED,
        JourneyEventType.SLA_BREACHED,
        JourneyEventType.AUTO_ACTION_TRIGGERED,
    }
)


class TriggeredByType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"
    AUTOMATION = "AUTOMATION"
    WEBHOOK = "WEBHOOK"


class OverrideKind(str, enum.Enum):
    FAST_FORWARD = "FAST_FORWARD"
    ROLLBACK = "ROLLBACK"
    EXTEND_SLA = "EXTEND_SLA"


class ActionCategory(str, enum.Enum):
    TASK = "task"
    NOTIFICATION = "notification"
    EMAIL = "email"
    SMS = "sms"
    ENTITY_UPDATE = "entity_update"


class ActionStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
