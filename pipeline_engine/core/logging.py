"""Structured log payloads for engine background work."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any


def _as_text(value: Any) -> str | None:
    return str(value) if value is not None else None


@dataclass(frozen=True)
class LogContext:
    """Where in the engine a log line comes from: tenant, pipeline, entry and stage."""

    tenant_id: str | None = None
    actor: str | None = None
    pipeline_id: str | None = None
    entry_id: str | None = None
    stage_id: str | None = None
    task_name: str | None = None
    trace_id: str | None = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any], task_name: str | None = None) -> "LogContext":
        """Build a context from task kwargs; ids are stringified so tenants log uniformly."""
        return cls(
            tenant_id=_as_text(values.get("tenant_id")),
            actor=_as_text(values.get("actor")),
            pipeline_id=_as_text(values.get("pipeline_id")),
            entry_id=_as_text(values.get("entry_id")),
            stage_id=_as_text(values.get("stage_id")),
            task_name=task_name,
            trace_id=_as_text(values.get("trace_id")),
        )


def build_log_event(event: str, context: LogContext, **fields: Any) -> dict[str, Any]:
    """Payload for ``logger.info(event, extra=...)``; unset context fields are left out."""
    payload: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event}
    payload.update({name: value for name, value in asdict(context).items() if value is not None})
    payload.update(fields)
    return payload
