from __future__ import annotations

from datetime import timedelta

from pipeline_engine.models import Tenant
from pipeline_engine.models.base import utcnow
from pipeline_engine.models.enums import JourneyEventType, TriggeredByType
from pipeline_engine.services.sla_service import SlaSweepService


def _later(days: int = 3):
    return utcnow() + timedelta(days=days)


def test_sweep_flags_overdue_entry_once(engine, pipeline, tenant_id, notifier):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry

    first = engine.sweep_sla(now=_later())
    second = engine.sweep_sla(now=_later())

    assert first.to_dict() == {
        "scanned": 1,
        "breached": 1,
        "notified": 1,
        "errors": 0,
        "breached_entry_ids": [entry.id],
    }
    assert second.scanned == 0
    assert second.breached == 0
    assert engine.get_entry(tenant_id, entry.id).sla_breached is True

    events = engine.list_events(tenant_id, entry_id=entry.id, event_type=JourneyEventType.SLA_BREACHED)
    assert len(events) == 1
    assert events[0].triggered_by == "sla-sweep"
    assert events[0].triggered_by_type == TriggeredByType.SYSTEM
    assert events[0].sla_impact is True
    assert events[0].stage == "inquiry"

    breach_notices = [call for call in notifier.calls if call["title"] == "Pipeline SLA Breached"]
    assert len(breach_notices) == 1
    assert breach_notices[0]["recipient_id"] == "consultant-7"
    assert breach_notices[0]["recipient_type"] == "USER"
    assert breach_notices[0]["payload"]["pipeline_entry_id"] == entry.id


def test_unassigned_entity_escalates_to_team(engine, pipeline, tenant_id, notifier):
    engine.enroll(tenant_id, pipeline.id, "LEAD", "lead-1")

    result = engine.sweep_sla(now=_later())

    assert result.notified == 1
    notice = notifier.calls[-1]
    assert notice["recipient_type"] == "TEAM"
    assert notice["recipient_id"] == "pipeline-operations"
    assert notice["message"] == "Alan Turing has exceeded the SLA for stage inquiry"


def test_entries_within_deadline_are_ignored(engine, pipeline, tenant_id):
    engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1")

    assert engine.sweep_sla().scanned == 0


def test_closed_entries_and_disabled_pipelines_are_ignored(engine, pipeline, tenant_id, pipeline_payload):
    cancelled = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    engine.cancel(tenant_id, cancelled.id)
    relaxed = engine.create_pipeline(tenant_id, pipeline_payload(name="Relaxed"))
    engine.enroll(tenant_id, relaxed.id, "STUDENT", "student-2")
    engine.update_pipeline(tenant_id, relaxed.id, {"enable_sla": False})

    assert engine.sweep_sla(now=_later()).scanned == 0


def test_sweep_can_be_limited_to_one_tenant(engine, pipeline, tenant_id, session_factory):
    engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1")
    session = session_factory()
    other = Tenant(subdomain="globex", name="Globex")
    session.add(other)
    session.commit()
    other_id = other.id
    session.close()

    assert engine.sweep_sla(tenant_id=other_id, now=_later()).scanned == 0
    assert engine.sweep_sla(tenant_id=tenant_id, now=_later()).breached == 1


def test_breach_flag_survives_stage_moves(engine, pipeline, tenant_id):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    engine.sweep_sla(now=_later())

    moved = engine.move_to_stage(tenant_id, entry.id, "documents").entry

    assert moved.sla_breached is True
    assert moved.sla_deadline > utcnow()


def test_one_failing_entry_does_not_stop_the_sweep(engine, pipeline, tenant_id, session_factory, monkeypatch):
    first = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    second = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-2").entry
    original = SlaSweepService._mark_breached

    def flaky(self, entry_id, now):
        if entry_id == first.id:
            raise RuntimeError("row locked")
        return original(self, entry_id, now)

    monkeypatch.setattr(SlaSweepService, "_mark_breached", flaky)
    with SlaSweepService(session_factory()) as service:
        result = service.sweep(now=_later())

    assert result.scanned == 2
    assert result.errors == 1
    assert result.breached_entry_ids == [second.id]
    assert result.notified == 0


def test_notification_failure_keeps_breach(engine, pipeline, tenant_id, notifier):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    notifier.fail_for = {"consultant-7"}

    result = engine.sweep_sla(now=_later())

    assert result.breached == 1
    assert result.notified == 0
    assert engine.get_entry(tenant_id, entry.id).sla_breached is True
