from __future__ import annotations

import logging
import time
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from pipeline_engine.models.base import utcnow
from pipeline_engine.models.enums import ActionCategory, ActionStatus, EntityType, JourneyEventType, TriggeredByType
from pipeline_engine.schemas.pipeline import PipelineDefinition
from pipeline_engine.services.automation_executor import AutomationContext, AutomationExecutor, AutomationReport, ActionOutcome
from pipeline_engine.services.journey_service import JourneyService


def _single_stage_definition(automation: dict, duration_days: int = 0) -> PipelineDefinition:
    return PipelineDefinition.model_validate(
        {
            "id": 7,
            "tenant_id": 1,
            "name": "Fast Track",
            "stages": [{"id": "review", "name": "Review", "duration_days": duration_days, "automation": automation}],
        }
    )


def _context(definition: PipelineDefinition, entity, stage_changed: bool = False) -> AutomationContext:
    return AutomationContext(
        tenant_id=1,
        definition=definition,
        stage=definition.stages[0],
        entry_id=10,
        entity_type=EntityType.STUDENT,
        entity_id="student-1",
        entity=entity,
        stage_changed=stage_changed,
    )


def test_stage_automations_run_and_are_journaled(
    engine, pipeline, tenant_id, task_creator, notifier, messaging, student_store
):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    report = result.automation
    assert report.attempted == 7
    assert report.failed == 0
    assert result.summary() == "moved, 7 automations succeeded"

    task = task_creator.calls[0]
    assert task["template"]["title"] == "Collect documents for Ada"
    assert task["template"]["priority"] == "HIGH"
    assert task["assignee"] == "consultant-7"
    assert abs(task["due_date"] - (result.entry.moved_at + timedelta(days=5))) < timedelta(minutes=1)
    assert task["context"]["pipeline_entry_id"] == entry.id
    assert task["context"]["pipeline_generated"] is True

    assert messaging.emails == [
        {"to": "ada@example.com", "subject": "Hi Ada", "body": "You are now in Documents of Student Onboarding"}
    ]
    assert messaging.sms == [{"to": "+15550100", "body": "Ada, please upload your documents"}]
    assert student_store.records["student-1"]["status"] == "DOCUMENTS"
    assert {call["title"] for call in notifier.calls} == {
        "Ada reached Documents",
        "Pipeline Stage Updated",
        "Your Application Progress",
    }
    assignee_notice = next(call for call in notifier.calls if call["title"] == "Pipeline Stage Updated")
    assert assignee_notice["recipient_id"] == "consultant-7"
    assert assignee_notice["message"] == "Ada Lovelace has moved to Documents stage"

    events = engine.list_events(tenant_id, entry_id=entry.id, event_type="AUTO_ACTION_TRIGGERED")
    assert len(events) == 1
    assert events[0].triggered_by_type == TriggeredByType.AUTOMATION
    assert events[0].event_data["attempted"] == 7
    assert events[0].event_data["failures"] == []


def test_failed_action_does_not_block_transition(engine, pipeline, tenant_id, messaging):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    messaging.fail_sms = True

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    assert result.entry.current_stage == "documents"
    assert result.automations_failed == 1
    assert result.summary() == "moved, 1 of 7 automations failed"
    assert len(messaging.emails) == 1

    event = engine.list_events(tenant_id, entry_id=entry.id, event_type=JourneyEventType.AUTO_ACTION_TRIGGERED)[0]
    failure = event.event_data["failures"][0]
    assert failure["category"] == "sms"
    assert failure["status"] == "failed"
    assert "sms gateway unavailable" in failure["detail"]


def test_notification_failures_are_counted(engine, pipeline, tenant_id, notifier):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry
    notifier.fail_for = {"consultant-7"}

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    assert result.summary() == "moved, 2 of 7 automations failed"
    assert {outcome.label for outcome in result.automation.failures} == {"notification[0]", "stage_change.assignee"}


def test_missing_contact_details_fail_individually(engine, pipeline, tenant_id, task_creator):
    entry = engine.enroll(tenant_id, pipeline.id, "LEAD", "lead-1").entry

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    report = result.automation
    assert report.attempted == 5
    assert {outcome.detail for outcome in report.failures} == {
        "notification has no recipient",
        "email has no recipient address",
        "sms has no recipient phone number",
    }
    assert task_creator.calls[0]["assignee"] is None
    assert task_creator.calls[0]["template"]["title"] == "Collect documents for Alan"


def test_unresolved_entity_at_move_time(engine, pipeline, tenant_id, student_store, task_creator):
    entry = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-2").entry
    del student_store.records["student-2"]

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    assert result.entry.current_stage == "documents"
    assert result.summary() == "moved, 4 of 5 automations failed"
    assert task_creator.calls[0]["template"]["title"] == "Collect documents for "
    update_failure = next(o for o in result.automation.failures if o.category == ActionCategory.ENTITY_UPDATE)
    assert update_failure.detail.startswith("KeyError")


def test_disabled_auto_actions_skip_everything(engine, tenant_id, pipeline_payload, task_creator, notifier, messaging):
    quiet = engine.create_pipeline(tenant_id, pipeline_payload(name="Quiet", enable_auto_actions=False))
    entry = engine.enroll(tenant_id, quiet.id, "STUDENT", "student-1").entry

    result = engine.move_to_stage(tenant_id, entry.id, "documents")

    assert result.automation.skipped is True
    assert result.summary() == "moved"
    assert task_creator.calls == []
    assert notifier.calls == []
    assert messaging.emails == []
    assert engine.list_events(tenant_id, entry_id=entry.id, event_type="AUTO_ACTION_TRIGGERED") == []


def test_round_robin_assignment_cycles_through_pool(engine, tenant_id, pipeline_payload, student_store, task_creator):
    for index in range(1, 5):
        student_store.records[f"rr-{index}"] = {"id": f"rr-{index}", "firstName": f"Student{index}"}
    stages = [
        {
            "id": "intake",
            "name": "Intake",
            "automation": {"tasks": [{"title": "Welcome call", "assignee_pool": ["amy", "ben", "cai"]}]},
        },
        {"id": "done", "name": "Done"},
    ]
    definition = engine.create_pipeline(tenant_id, pipeline_payload(stages=stages, name="Round Robin"))

    for index in range(1, 5):
        engine.enroll(tenant_id, definition.id, "STUDENT", f"rr-{index}")

    assert [call["assignee"] for call in task_creator.calls] == ["amy", "ben", "cai", "amy"]


def test_slow_action_times_out_without_blocking_others(collaborators, messaging, task_creator, student_store):
    messaging.sms_delay = 1.0
    definition = _single_stage_definition(
        {
            "tasks": [{"title": "Review file"}],
            "emails": [{"subject": "Hello", "body": "Body"}],
            "sms": [{"message": "Ping"}],
        }
    )
    executor = AutomationExecutor(collaborators, max_workers=4, action_timeout=0.2)

    started = time.monotonic()
    report = executor.run(_context(definition, student_store.lookup("student-1")))
    elapsed = time.monotonic() - started

    statuses = {outcome.label: outcome.status for outcome in report.outcomes}
    assert statuses == {
        "task[0]": ActionStatus.SUCCEEDED,
        "email[0]": ActionStatus.SUCCEEDED,
        "sms[0]": ActionStatus.TIMED_OUT,
    }
    assert elapsed < 1.0
    assert len(task_creator.calls) == 1


def test_queued_action_gets_its_own_timeout_behind_a_hung_worker(collaborators, task_creator, student_store):
    task_creator.delays["Hangs"] = 1.5
    definition = _single_stage_definition({"tasks": [{"title": "Hangs"}, {"title": "Quick"}]})
    executor = AutomationExecutor(collaborators, max_workers=1, action_timeout=0.3)

    started = time.monotonic()
    report = executor.run(_context(definition, student_store.lookup("student-1")))
    elapsed = time.monotonic() - started

    outcomes = {outcome.label: outcome for outcome in report.outcomes}
    assert outcomes["task[0]"].status == ActionStatus.TIMED_OUT
    assert outcomes["task[0]"].detail == "no result within 0.3s"
    assert outcomes["task[1]"].status == ActionStatus.SUCCEEDED
    assert outcomes["task[1]"].external_id == "task-1"
    assert [call["template"]["title"] for call in task_creator.calls] == ["Quick"]
    assert elapsed < 1.5


def test_action_finishing_inside_its_timeout_keeps_its_result(collaborators, task_creator, student_store):
    task_creator.delays["Steady"] = 0.2
    definition = _single_stage_definition({"tasks": [{"title": "Steady"}, {"title": "Also steady"}]})
    executor = AutomationExecutor(collaborators, max_workers=1, action_timeout=0.5)

    report = executor.run(_context(definition, student_store.lookup("student-1")))

    assert [outcome.status for outcome in report.outcomes] == [ActionStatus.SUCCEEDED, ActionStatus.SUCCEEDED]
    assert report.outcomes[0].elapsed_ms >= 200


def test_task_due_dates_follow_template_then_stage_then_default(collaborators, task_creator, student_store):
    definition = _single_stage_definition(
        {"tasks": [{"title": "Explicit", "due_in_days": 3}, {"title": "Fallback"}]},
        duration_days=0,
    )
    executor = AutomationExecutor(collaborators, default_due_days=7)

    before = utcnow()
    executor.run(_context(definition, student_store.lookup("student-1")))

    due = {call["template"]["title"]: call["due_date"] - before for call in task_creator.calls}
    assert timedelta(days=3) <= due["Explicit"] < timedelta(days=3, minutes=1)
    assert timedelta(days=7) <= due["Fallback"] < timedelta(days=7, minutes=1)


def test_round_robin_without_counter_store_fails_the_action(collaborators, student_store):
    definition = _single_stage_definition({"tasks": [{"title": "Call", "assignee_pool": ["amy"]}]})
    executor = AutomationExecutor(collaborators)

    report = executor.run(_context(definition, student_store.lookup("student-1")))

    assert report.failed == 1
    assert report.failures[0].detail == "round-robin assignment is not available"


def test_stage_change_notices_only_when_stage_changed(collaborators, notifier, student_store):
    definition = _single_stage_definition({})
    executor = AutomationExecutor(collaborators)
    entity = student_store.lookup("student-1")

    assert executor.run(_context(definition, entity, stage_changed=False)).attempted == 0
    report = executor.run(_context(definition, entity, stage_changed=True))

    assert report.attempted == 2
    assert {call["title"] for call in notifier.calls} == {"Pipeline Stage Updated", "Your Application Progress"}


def test_report_summary_wording():
    outcome_ok = ActionOutcome(category=ActionCategory.TASK, label="task[0]", status=ActionStatus.SUCCEEDED)
    outcome_bad = ActionOutcome(category=ActionCategory.SMS, label="sms[0]", status=ActionStatus.FAILED, detail="x")

    assert AutomationReport(stage_id="a", skipped=True).summary() == "automations skipped"
    assert AutomationReport(stage_id="a", outcomes=[outcome_ok]).summary() == "1 of 1 automations succeeded"
    assert AutomationReport(stage_id="a", outcomes=[outcome_ok, outcome_bad]).summary() == "1 of 2 automations failed"
    assert AutomationReport(stage_id="a", outcomes=[outcome_bad]).to_payload()["failures"][0]["label"] == "sms[0]"


def test_journal_write_failure_after_automations_keeps_the_move(
    engine, pipeline, tenant_id, messaging, monkeypatch, caplog
):
    entry_id = engine.enroll(tenant_id, pipeline.id, "STUDENT", "student-1").entry.id
    append = JourneyService.append

    def locked_journal(self, entry, event_type, **fields):
        if event_type == JourneyEventType.AUTO_ACTION_TRIGGERED:
            raise OperationalError("INSERT INTO journey_events", {}, Exception("database is locked"))
        return append(self, entry, event_type, **fields)

    monkeypatch.setattr(JourneyService, "append", locked_journal)

    with caplog.at_level(logging.ERROR):
        result = engine.move_to_stage(tenant_id, entry_id, "documents")

    assert result.entry.current_stage == "documents"
    assert result.automation.attempted == 7
    assert len(messaging.emails) == 1
    assert engine.get_entry(tenant_id, entry_id).current_stage == "documents"
    assert engine.list_events(tenant_id, entry_id=entry_id, event_type="AUTO_ACTION_TRIGGERED") == []
    assert any(getattr(record, "event", None) == "automation.journal.failed" for record in caplog.records)
