"""Lifecycle hooks for queue task execution."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pipeline_engine.core.logging import LogContext, build_log_event


def before_task(task_key: str, context: dict[str, Any]) -> dict[str, Any]:
    """Build pre-task log payload."""
    return build_log_event(event="task.start", context=LogContext.from_mapping(context, task_name=task_key))


def after_task(task_key: str, context: dict[str, Any], status: str, **fields: Any) -> dict[str, Any]:
    """Build post-task log payload."""
    return build_log_event(
        event="task.finish" if status == "succeeded" else "task.failed",
        context=LogContext.from_mapping(context, task_name=task_key),
        status=status,
        finished_at=datetime.now(timezone.utc).isoformat(),
        **fields,
    )
