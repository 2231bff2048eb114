"""Periodic SLA breach sweep task."""

from __future__ import annotations

import logging
from typing import Any

from pipeline_engine.core.dependencies import get_collaborators
from pipeline_engine.database.db import get_db_session
from pipeline_engine.services.sla_service import SlaSweepService
from pipeline_engine.tasks.celery_app import celery_app
from pipeline_engine.tasks.hooks import after_task, before_task
from pipeline_engine.utils.ids import new_trace_id

logger = logging.getLogger(__name__)

SLA_SWEEP_TASK = "pipelines.sla_sweep"


def run_sla_sweep(tenant_id: int | None = None) -> dict[str, Any]:
    """Run one sweep with the process-wide collaborators and report the counts."""
    context = {"tenant_id": tenant_id, "actor": "sla-sweep", "trace_id": new_trace_id()}
    logger.info("task.start", extra=before_task(task_key=SLA_SWEEP_TASK, context=context))
    try:
        collaborators = get_collaborators()
        with get_db_session() as session:
            result = SlaSweepService(session, collaborators=collaborators).sweep(tenant_id=tenant_id)
    except Exception as exc:
        logger.exception(
            "task.failed",
            extra=after_task(task_key=SLA_SWEEP_TASK, context=context, status="failed", error=str(exc)),
        )
        raise
    payload = result.to_dict()
    logger.info(
        "task.finish",
        extra=after_task(task_key=SLA_SWEEP_TASK, context=context, status="succeeded", breached=result.breached),
    )
    return {"status": "ok", **payload}


@celery_app.task(name=SLA_SWEEP_TASK)
def sla_sweep_task(tenant_id: int | None = None) -> dict[str, Any]:
    return run_sla_sweep(tenant_id=tenant_id)
