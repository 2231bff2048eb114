"""Stage automation fan-out.

Actions are planned on the calling thread (template rendering, assignee
resolution) and only the collaborator calls run on the worker pool. Every
action is isolated: a failure, exception or timeout becomes a failed
outcome in the report and never propagates to the stage transition.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pipeline_engine.core.config import get_config
from pipeline_engine.core.exceptions import AutomationFailure
from pipeline_engine.models.base import as_utc, utcnow
from pipeline_engine.models.enums import ActionCategory, ActionStatus, EntityType
from pipeline_engine.schemas.pipeline import (
    EmailTemplate,
    NotificationTemplate,
    PipelineDefinition,
    SmsTemplate,
    Stage,
    TaskTemplate,
)
from pipeline_engine.services.assignment_service import AssignmentService
from pipeline_engine.services.interfaces import Collaborators
from pipeline_engine.services.templating import build_template_variables, personalize_template

logger = logging.getLogger(__name__)


@dataclass
class ActionOutcome:
    category: ActionCategory
    label: str
    status: ActionStatus
    detail: str | None = None
    external_id: str | None = None
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "label": self.label,
            "status": self.status.value,
            "detail": self.detail,
            "external_id": self.external_id,
            "elapsed_ms": self.elapsed_ms,
        }


@dataclass
class AutomationReport:
    stage_id: str | None
    outcomes: list[ActionOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.succeeded)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def failures(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.succeeded]

    def summary(self) -> str:
        if self.skipped:
            return "automations skipped"
        if not self.failed:
            return f"{self.attempted} of {self.attempted} automations succeeded"
        return f"{self.failed} of {self.attempted} automations failed"

    def to_payload(self) -> dict[str, Any]:
        """Counts and failure details recorded on the automation journey event."""
        return {
            "stage_id": self.stage_id,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "failures": [outcome.to_dict() for outcome in self.failures],
        }


@dataclass(frozen=True)
class AutomationContext:
    tenant_id: int
    definition: PipelineDefinition
    stage: Stage
    entry_id: int
    entity_type: EntityType
    entity_id: str
    entity: Mapping[str, Any] | None = None
    stage_changed: bool = False
    progress: float = 0.0

    def base_payload(self) -> dict[str, Any]:
        return {
            "pipeline_generated": True,
            "pipeline_id": self.definition.id,
            "pipeline_entry_id": self.entry_id,
            "stage_id": self.stage.id,
            "stage_name": self.stage.name,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
        }


@dataclass
class PlannedAction:
    category: ActionCategory
    label: str
    run: Callable[[], Any] | None = None
    error: str | None = None


def entity_assignee(entity: Mapping[str, Any] | None) -> str | None:
    if not entity:
        return None
    for key in ("assignedTo", "assigned_to", "consultantId", "consultant_id"):
        value = entity.get(key)
        if value:
            return str(value)
    return None


def _entity_field(entity: Mapping[str, Any] | None, *keys: str) -> str | None:
    if not entity:
        return None
    for key in keys:
        value = entity.get(key)
        if value:
            return str(value)
    return None


def entity_display_name(entity: Mapping[str, Any] | None, entity_type: EntityType, entity_id: str) -> str:
    first = _entity_field(entity, "firstName", "first_name") or ""
    last = _entity_field(entity, "lastName", "last_name") or ""
    full = f"{first} {last}".strip()
    if full:
        return full
    return _entity_field(entity, "name") or f"{entity_type.value.title()} {entity_id}"


class AutomationExecutor:
    """Run a stage's automation rules against one entity with a bounded worker group."""

    def __init__(
        self,
        collaborators: Collaborators,
        assignments: AssignmentService | None = None,
        max_workers: int | None = None,
        action_timeout: float | None = None,
        default_due_days: int | None = None,
    ) -> None:
        config = get_config()
        self.collaborators = collaborators
        self.assignments = assignments
        self.max_workers = max_workers or config.AUTOMATION_MAX_WORKERS
        self.action_timeout = action_timeout or config.AUTOMATION_ACTION_TIMEOUT_SECONDS
        self.default_due_days = config.DEFAULT_TASK_DUE_DAYS if default_due_days is None else default_due_days

    def run(self, context: AutomationContext) -> AutomationReport:
        if not context.definition.enable_auto_actions:
            logger.info(
                "automation.skipped",
                extra={"event": "automation.skipped", "entry_id": context.entry_id, "stage_id": context.stage.id},
            )
            return AutomationReport(stage_id=context.stage.id, skipped=True)

        actions = self.plan(context)
        report = self._execute(context, actions)
        logger.info(
            "automation.executed",
            extra={
                "event": "automation.executed",
                "tenant_id": context.tenant_id,
                "entry_id": context.entry_id,
                "stage_id": context.stage.id,
                "attempted": report.attempted,
                "succeeded": report.succeeded,
                "failed": report.failed,
            },
        )
        return report

    # Planning

    def plan(self, context: AutomationContext) -> list[PlannedAction]:
        variables = build_template_variables(context.entity, context.stage, context.definition.name)
        rules = context.stage.automation
        planned: list[PlannedAction] = []
        if rules is not None:
            for index, template in enumerate(rules.tasks):
                planned.append(
                    self._guard(ActionCategory.TASK, f"task[{index}]", self._plan_task, context, variables, index, template)
                )
            for index, template in enumerate(rules.notifications):
                planned.append(
                    self._guard(
                        ActionCategory.NOTIFICATION,
                        f"notification[{index}]",
                        self._plan_notification,
                        context,
                        variables,
                        template,
                    )
                )
            for index, template in enumerate(rules.emails):
                planned.append(
                    self._guard(ActionCategory.EMAIL, f"email[{index}]", self._plan_email, context, variables, template)
                )
            for index, template in enumerate(rules.sms):
                planned.append(
                    self._guard(ActionCategory.SMS, f"sms[{index}]", self._plan_sms, context, variables, template)
                )
            for index, fields in enumerate(rules.entity_updates):
                planned.append(
                    self._guard(
                        ActionCategory.ENTITY_UPDATE,
                        f"entity_update[{index}]",
                        self._plan_entity_update,
                        context,
                        fields,
                    )
                )
        if context.stage_changed:
            planned.extend(self._plan_stage_change_notices(context))
        return planned

    def _guard(self, category: ActionCategory, label: str, planner: Callable[..., Callable[[], Any]], *args: Any) -> PlannedAction:
        try:
            return PlannedAction(category=category, label=label, run=planner(*args))
        except AutomationFailure as exc:
            return PlannedAction(category=category, label=label, error=str(exc))
        except Exception as exc:
            logger.exception(
                "automation.plan.failed",
                extra={"event": "automation.plan.failed", "category": category.value},
            )
            return PlannedAction(category=category, label=label, error=f"{exc.__class__.__name__}: {exc}")

    def _task_due_date(self, template: TaskTemplate, stage: Stage, now: datetime) -> datetime:
        if template.due_date is not None:
            return as_utc(template.due_date)
        if template.due_in_days is not None:
            return now + timedelta(days=template.due_in_days)
        if stage.duration_days > 0:
            return now + timedelta(days=stage.duration_days)
        return now + timedelta(days=self.default_due_days)

    def _resolve_assignee(self, context: AutomationContext, index: int, template: TaskTemplate) -> str | None:
        if template.assigned_to:
            return template.assigned_to
        if template.assignee_pool:
            if self.assignments is None:
                raise AutomationFailure("round-robin assignment is not available")
            counter_key = f"pipeline:{context.definition.id}:stage:{context.stage.id}:task:{index}"
            return self.assignments.next_assignee(context.tenant_id, counter_key, template.assignee_pool)
        return entity_assignee(context.entity)

    def _plan_task(
        self, context: AutomationContext, variables: dict[str, Any], index: int, template: TaskTemplate
    ) -> Callable[[], Any]:
        stage = context.stage
        payload = {
            "title": personalize_template(template.title, variables) or f"Pipeline Task: {stage.name}",
            "description": personalize_template(template.description, variables)
            or f"Automated task for {stage.name} stage",
            "type": template.type,
            "category": template.category,
            "priority": template.priority,
        }
        assignee = self._resolve_assignee(context, index, template)
        due_date = self._task_due_date(template, stage, utcnow())
        task_context = context.base_payload()
        creator = self.collaborators.tasks
        return lambda: creator.create_task(payload, assignee, due_date, task_context)

    def _plan_notification(
        self, context: AutomationContext, variables: dict[str, Any], template: NotificationTemplate
    ) -> Callable[[], Any]:
        stage = context.stage
        recipient = template.recipient_id or entity_assignee(context.entity)
        if not recipient:
            raise AutomationFailure("notification has no recipient")
        title = personalize_template(template.title, variables) or f"Pipeline Update: {stage.name}"
        message = personalize_template(template.message, variables) or f"Entity has moved to {stage.name} stage"
        payload = {**context.base_payload(), "type": template.type, "priority": template.priority}
        return self._notify_call(recipient, template.recipient_type, template.channel, title, message, payload)

    def _plan_email(self, context: AutomationContext, variables: dict[str, Any], template: EmailTemplate) -> Callable[[], Any]:
        to = personalize_template(template.to, variables) or _entity_field(context.entity, "email")
        if not to:
            raise AutomationFailure("email has no recipient address")
        subject = personalize_template(template.subject, variables)
        body = personalize_template(template.body, variables)
        sender = self.collaborators.messaging
        return lambda: sender.send_email(to, subject, body)

    def _plan_sms(self, context: AutomationContext, variables: dict[str, Any], template: SmsTemplate) -> Callable[[], Any]:
        to = personalize_template(template.to, variables) or _entity_field(context.entity, "phone")
        if not to:
            raise AutomationFailure("sms has no recipient phone number")
        body = personalize_template(template.message, variables)
        sender = self.collaborators.messaging
        return lambda: sender.send_sms(to, body)

    def _plan_entity_update(self, context: AutomationContext, fields: dict[str, Any]) -> Callable[[], Any]:
        registry = self.collaborators.entities
        values = dict(fields)
        return lambda: registry.update_fields(context.entity_type, context.entity_id, values)

    def _plan_stage_change_notices(self, context: AutomationContext) -> list[PlannedAction]:
        stage = context.stage
        notices: list[PlannedAction] = []
        assignee = entity_assignee(context.entity)
        if assignee:
            name = entity_display_name(context.entity, context.entity_type, context.entity_id)
            payload = {**context.base_payload(), "type": "INFO", "priority": "MEDIUM"}
            notices.append(
                PlannedAction(
                    category=ActionCategory.NOTIFICATION,
                    label="stage_change.assignee",
                    run=self._notify_call(
                        assignee,
                        "USER",
                        "IN_APP",
                        "Pipeline Stage Updated",
                        f"{name} has moved to {stage.name} stage",
                        payload,
                    ),
                )
            )
        if _entity_field(context.entity, "email"):
            payload = {
                **context.base_payload(),
                "type": "SUCCESS",
                "priority": "MEDIUM",
                "progress": context.progress,
            }
            notices.append(
                PlannedAction(
                    category=ActionCategory.NOTIFICATION,
                    label="stage_change.entity",
                    run=self._notify_call(
                        context.entity_id,
                        context.entity_type.value,
                        "IN_APP",
                        "Your Application Progress",
                        f"Great news! Your application has progressed to the {stage.name} stage",
                        payload,
                    ),
                )
            )
        return notices

    def _notify_call(
        self, recipient: str, recipient_type: str, channel: str, title: str, message: str, payload: dict[str, Any]
    ) -> Callable[[], Any]:
        dispatcher = self.collaborators.notifications
        return lambda: dispatcher.notify(recipient, recipient_type, channel, title, message, payload)

    # Execution

    def _timed(self, action: PlannedAction) -> ActionOutcome:
        started = time.monotonic()
        status = ActionStatus.SUCCEEDED
        detail: str | None = None
        external_id: str | None = None
        try:
            result = action.run()
            external_id = str(result) if result is not None else None
        except AutomationFailure as exc:
            status, detail = ActionStatus.FAILED, str(exc)
        except Exception as exc:
            logger.exception(
                "automation.action.error",
                extra={"event": "automation.action.error", "category": action.category.value},
            )
            status, detail = ActionStatus.FAILED, f"{exc.__class__.__name__}: {exc}"
        return ActionOutcome(
            category=action.category,
            label=action.label,
            status=status,
            detail=detail,
            external_id=external_id,
            elapsed_ms=int((time.monotonic() - started) * 1000),
        )

    def _new_pool(self, size: int) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=min(self.max_workers, size), thread_name_prefix="pipeline-automation")

    def _run_with_timeouts(
        self, runnable: list[tuple[int, PlannedAction]], outcomes: list[ActionOutcome | None]
    ) -> None:
        """Each action's clock starts when a worker picks it up.

        An action that overruns is reported TIMED_OUT and its worker is abandoned. Actions that
        were still queued behind it move to a fresh pool so they get their own full timeout.
        """
        started: dict[int, float] = {}

        def launch(position: int, action: PlannedAction) -> ActionOutcome:
            started[position] = time.monotonic()
            return self._timed(action)

        pools = [self._new_pool(len(runnable))]
        pending = {pools[0].submit(launch, position, action): (position, action) for position, action in runnable}
        try:
            while pending:
                deadlines = [
                    started[position] + self.action_timeout for position, _ in pending.values() if position in started
                ]
                timeout = max(min(deadlines) - time.monotonic(), 0) if deadlines else self.action_timeout
                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                for future in done:
                    position, _ = pending.pop(future)
                    outcomes[position] = future.result()

                now = time.monotonic()
                expired = [
                    future
                    for future, (position, _) in pending.items()
                    if position in started and now - started[position] >= self.action_timeout
                ]
                for future in expired:
                    position, action = pending.pop(future)
                    outcomes[position] = ActionOutcome(
                        category=action.category,
                        label=action.label,
                        status=ActionStatus.TIMED_OUT,
                        detail=f"no result within {self.action_timeout:g}s",
                        elapsed_ms=int((now - started[position]) * 1000),
                    )
                if not expired:
                    continue

                queued = [future for future in list(pending) if future.cancel()]
                if queued:
                    pool = self._new_pool(len(queued))
                    pools.append(pool)
                    for future in queued:
                        position, action = pending.pop(future)
                        pending[pool.submit(launch, position, action)] = (position, action)
        finally:
            for pool in pools:
                pool.shutdown(wait=False, cancel_futures=True)

    def _execute(self, context: AutomationContext, actions: list[PlannedAction]) -> AutomationReport:
        outcomes: list[ActionOutcome | None] = [None] * len(actions)
        runnable: list[tuple[int, PlannedAction]] = []
        for position, action in enumerate(actions):
            if action.error is not None:
                outcomes[position] = ActionOutcome(
                    category=action.category, label=action.label, status=ActionStatus.FAILED, detail=action.error
                )
            else:
                runnable.append((position, action))

        if runnable:
            self._run_with_timeouts(runnable, outcomes)

        report = AutomationReport(stage_id=context.stage.id, outcomes=[outcome for outcome in outcomes if outcome is not None])
        for outcome in report.failures:
            logger.warning(
                "automation.action.failed",
                extra={
                    "event": "automation.action.failed",
                    "tenant_id": context.tenant_id,
                    "entry_id": context.entry_id,
                    "stage_id": context.stage.id,
                    "category": outcome.category.value,
                    "label": outcome.label,
                    "status": outcome.status.value,
                    "detail": outcome.detail,
                },
            )
        return report
