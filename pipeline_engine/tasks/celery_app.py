"""Celery application bootstrap."""

from __future__ import annotations

import os

from celery import Celery
from celery.signals import worker_process_init

from pipeline_engine.core.config import get_config
from pipeline_engine.core.startup import bootstrap

config = get_config()

celery_app = Celery(
    "pipeline_engine",
    broker=config.CELERY_BROKER_URL,
    backend=config.CELERY_RESULT_BACKEND,
    include=["pipeline_engine.tasks.sla_tasks"],
)
celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    beat_schedule={
        "pipelines-sla-sweep": {
            "task": "pipelines.sla_sweep",
            "schedule": float(config.SLA_SWEEP_INTERVAL_SECONDS),
        },
    },
)

# Local/dev convenience: run tasks synchronously when requested.
if os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() in {"1", "true", "yes", "on"}:
    celery_app.conf.task_always_eager = True


@worker_process_init.connect
def bootstrap_worker_process(**_: object) -> None:
    """Install JSON logging and check the database in every forked worker."""
    bootstrap()
