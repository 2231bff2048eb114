"""Progress and SLA figures derived from a pipeline definition and an entry.

Every function here is pure: temporal values are recomputed from ``now`` on
each call and nothing is written back to the entry.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import Any

from pipeline_engine.models.base import as_utc, utcnow
from pipeline_engine.models.enums import StageProgressStatus
from pipeline_engine.schemas.pipeline import PipelineDefinition, Stage
from pipeline_engine.schemas.progress import NextStep, ProgressSnapshot, SLASummary, StageProgress, StageSLA

SECONDS_PER_DAY = 86400


def stage_progress_fraction(definition: PipelineDefinition, stage_id: str | None) -> float:
    """Fraction in ``[0, 1]`` for an entry sitting at ``stage_id``; 0 when the stage is unknown."""
    index = definition.stage_index(stage_id)
    if index < 0:
        return 0.0
    return min(1.0, max(0.0, (index + 1) / definition.total_stages))


def overall_progress(definition: PipelineDefinition, stage_id: str | None) -> int:
    return int(round(stage_progress_fraction(definition, stage_id) * 100))


def days_remaining(deadline: datetime | None, now: datetime | None = None) -> int | None:
    if deadline is None:
        return None
    current = as_utc(now) if now is not None else utcnow()
    delta = as_utc(deadline) - current
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


def compute_sla_deadline(definition: PipelineDefinition, stage: Stage, start: datetime) -> datetime | None:
    if not definition.enable_sla or stage.duration_days <= 0:
        return None
    return as_utc(start) + timedelta(days=stage.duration_days)


def estimate_completion(definition: PipelineDefinition, stage_id: str, start: datetime) -> datetime | None:
    """``start`` plus the durations of the current stage and every stage after it."""
    index = definition.stage_index(stage_id)
    if index < 0:
        return None
    remaining = sum(stage.duration_days for stage in definition.stages[index:])
    return as_utc(start) + timedelta(days=remaining)


def _next_steps(definition: PipelineDefinition, index: int) -> list[NextStep]:
    if index < 0 or index >= definition.total_stages - 1:
        return []
    upcoming = definition.stages[index + 1]
    return [
        NextStep(
            stage_id=upcoming.id,
            stage=upcoming.name,
            description=upcoming.description,
            requirements=list(upcoming.requirements),
            estimated_duration=upcoming.duration_days,
        )
    ]


def calculate_progress(definition: PipelineDefinition, entry: Any, now: datetime | None = None) -> ProgressSnapshot:
    """Compute the progress snapshot for ``entry``.

    A ``current_stage`` missing from the definition (stages edited after the
    entry was created) yields 0% with every stage ``NOT_STARTED`` and no next
    step, rather than an error.
    """
    current = as_utc(now) if now is not None else utcnow()
    index = definition.stage_index(entry.current_stage)
    deadline = as_utc(entry.sla_deadline)
    remaining = days_remaining(deadline, current)

    stages: list[StageProgress] = []
    for position, stage in enumerate(definition.stages):
        if index >= 0 and position < index:
            status = StageProgressStatus.COMPLETED
            sla = StageSLA(progress=100.0)
        elif position == index:
            status = StageProgressStatus.ACTIVE
            sla = StageSLA(progress=float(entry.percentage_complete or 0.0))
            if deadline is not None:
                sla = StageSLA(
                    deadline=deadline,
                    days_remaining=remaining,
                    is_overdue=remaining < 0,
                    progress=sla.progress,
                )
        else:
            status = StageProgressStatus.NOT_STARTED
            sla = StageSLA()
        stages.append(
            StageProgress(
                id=stage.id,
                name=stage.name,
                description=stage.description,
                index=position,
                duration_days=stage.duration_days,
                requirements=list(stage.requirements),
                status=status,
                is_active=position == index,
                progress=sla.progress,
                sla=sla,
            )
        )

    summary = SLASummary(
        deadline=deadline,
        is_breached=bool(entry.sla_breached),
        days_remaining=remaining,
        is_overdue=remaining is not None and remaining < 0,
        total_days=definition.total_duration_days,
    )
    return ProgressSnapshot(
        current_stage_index=index,
        total_stages=definition.total_stages,
        overall_progress=overall_progress(definition, entry.current_stage),
        stages=stages,
        sla=summary,
        next_steps=_next_steps(definition, index),
    )
