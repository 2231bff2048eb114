from __future__ import annotations

from contextlib import contextmanager
from datetime import timedelta

import pytest

import pipeline_engine.tasks.sla_tasks as sla_tasks
from pipeline_engine.core.dependencies import set_collaborators
from pipeline_engine.core.exceptions import ConfigurationError
from pipeline_engine.core.logging import LogContext, build_log_event
from pipeline_engine.models import PipelineEntry
from pipeline_engine.models.base import utcnow
from pipeline_engine.tasks.celery_app import celery_app
from pipeline_engine.tasks.hooks import after_task, before_task


@pytest.fixture
def installed_collaborators(collaborators):
    set_collaborators(collaborators)
    yield collaborators
    set_collaborators(None)


@pytest.fixture
def task_sessions(monkeypatch, session_factory):
    @contextmanager
    def _session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(sla_tasks, "get_db_session", _session)


def _expire_deadline(session_factory, entry_id):
    session = session_factory()
    entry = session.get(PipelineEntry, entry_id)
    entry.sla_deadline = utcnow() - timedelta(hours=1)
    session.commit()
    session.close()


def test_sla_sweep_task_flags_overdue_entries(
    engine, pipeline, tenant_id, session_factory, installed_collaborators, task_sessions, notifier
):
    entry_id = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry.id
    _expire_deadline(session_factory, entry_id)

    result = sla_tasks.sla_sweep_task.apply(kwargs={"tenant_id": tenant_id}).get()

    assert result["status"] == "ok"
    assert result["breached"] == 1
    assert result["breached_entry_ids"] == [entry_id]
    assert notifier.calls[-1]["title"] == "Pipeline SLA Breached"


def test_sla_sweep_requires_configured_collaborators(task_sessions):
    set_collaborators(None)

    with pytest.raises(ConfigurationError, match="collaborators"):
        sla_tasks.run_sla_sweep()


def test_sla_sweep_is_on_the_beat_schedule():
    schedule = celery_app.conf.beat_schedule["pipelines-sla-sweep"]

    assert schedule["task"] == sla_tasks.SLA_SWEEP_TASK
    assert schedule["schedule"] > 0
    assert sla_tasks.SLA_SWEEP_TASK in celery_app.tasks


def test_task_hooks_build_structured_payloads():
    context = {"tenant_id": 3, "actor": "sla-sweep", "trace_id": "abc123"}

    started = before_task(task_key=sla_tasks.SLA_SWEEP_TASK, context=context)
    failed = after_task(task_key=sla_tasks.SLA_SWEEP_TASK, context=context, status="failed", error="boom")

    assert started["event"] == "task.start"
    assert started["tenant_id"] == "3"
    assert started["task_name"] == "pipelines.sla_sweep"
    assert failed["event"] == "task.failed"
    assert failed["error"] == "boom"
    assert failed["trace_id"] == "abc123"


def test_log_context_carries_stage_and_omits_unset_fields():
    context = LogContext.from_mapping({"tenant_id": 3, "entry_id": 17, "stage_id": "documents"}, task_name="adhoc")

    payload = build_log_event("entry.moved", context, attempted=2)

    assert payload["entry_id"] == "17"
    assert payload["stage_id"] == "documents"
    assert payload["attempted"] == 2
    assert "pipeline_id" not in payload
    assert "trace_id" not in payload
