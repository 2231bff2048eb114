from __future__ import annotations

import threading
import time
from copy import deepcopy

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from pipeline_engine.models import Base, EntityType, Tenant
from pipeline_engine.orchestration.engine import PipelineEngine
from pipeline_engine.orchestration.locks import EntryLockRegistry
from pipeline_engine.services.interfaces import Collaborators, EntityRegistry
from pipeline_engine.services.pipeline_service import clear_definition_cache


class InMemoryEntityStore:
    def __init__(self, records: dict[str, dict] | None = None) -> None:
        self.records = {key: dict(value) for key, value in (records or {}).items()}
        self.updates: list[tuple[str, dict]] = []
        self._lock = threading.Lock()

    def lookup(self, entity_id):
        record = self.records.get(entity_id)
        return dict(record) if record is not None else None

    def update_fields(self, entity_id, fields):
        with self._lock:
            if entity_id not in self.records:
                raise KeyError(f"unknown entity {entity_id}")
            self.records[entity_id].update(fields)
            self.updates.append((entity_id, dict(fields)))


class RecordingTaskCreator:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.delays: dict[str, float] = {}
        self._lock = threading.Lock()

    def create_task(self, template, assignee, due_date, context):
        delay = self.delays.get(template["title"])
        if delay:
            time.sleep(delay)
        with self._lock:
            self.calls.append({"template": template, "assignee": assignee, "due_date": due_date, "context": context})
            return f"task-{len(self.calls)}"


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail_for: set[str] = set()
        self._lock = threading.Lock()

    def notify(self, recipient_id, recipient_type, channel, title, message, payload):
        if recipient_id in self.fail_for:
            raise RuntimeError(f"notification service rejected {recipient_id}")
        with self._lock:
            self.calls.append(
                {
                    "recipient_id": recipient_id,
                    "recipient_type": recipient_type,
                    "channel": channel,
                    "title": title,
                    "message": message,
                    "payload": payload,
                }
            )


class RecordingMessaging:
    def __init__(self) -> None:
        self.emails: list[dict] = []
        self.sms: list[dict] = []
        self.fail_sms = False
        self.sms_delay = 0.0
        self._lock = threading.Lock()

    def send_email(self, to, subject, body):
        with self._lock:
            self.emails.append({"to": to, "subject": subject, "body": body})
            return f"email-{len(self.emails)}"

    def send_sms(self, to, body):
        if self.sms_delay:
            time.sleep(self.sms_delay)
        if self.fail_sms:
            raise RuntimeError("sms gateway unavailable")
        with self._lock:
            self.sms.append({"to": to, "body": body})
            return f"sms-{len(self.sms)}"


STUDENTS = {
    "student-1": {
        "id": "student-1",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "+15550100",
        "assignedTo": "consultant-7",
    },
    "student-2": {
        "id": "student-2",
        "first_name": "Grace",
        "last_name": "Hopper",
        "email": "grace@example.com",
        "phone": "+15550101",
        "assignedTo": "consultant-7",
    },
}

LEADS = {
    "lead-1": {"id": "lead-1", "firstName": "Alan", "lastName": "Turing"},
}

THREE_STAGES = [
    {
        "id": "inquiry",
        "name": "Inquiry",
        "description": "First contact",
        "duration_days": 2,
        "requirements": ["Passport copy"],
    },
    {
        "id": "documents",
        "name": "Documents",
        "description": "Collect supporting documents",
        "duration_days": 5,
        "requirements": ["Transcript", "IELTS score"],
        "automation": {
            "tasks": [{"title": "Collect documents for {{firstName}}", "priority": "HIGH"}],
            "notifications": [{"title": "{{firstName}} reached {{stageName}}"}],
            "emails": [{"subject": "Hi {{firstName}}", "body": "You are now in {{stageName}} of {{pipelineName}}"}],
            "sms": [{"message": "{{firstName}}, please upload your documents"}],
            "entity_updates": [{"status": "DOCUMENTS"}],
        },
    },
    {
        "id": "enrolled",
        "name": "Enrolled",
        "description": "Student enrolled",
        "duration_days": 0,
    },
]


def pipeline_request(stages=None, **overrides) -> dict:
    request = {
        "name": "Student Onboarding",
        "description": "Inquiry to enrolment",
        "type": "STUDENT_ONBOARDING",
        "stages": deepcopy(stages if stages is not None else THREE_STAGES),
    }
    request.update(overrides)
    return request


@pytest.fixture(autouse=True)
def _fresh_definition_cache():
    clear_definition_cache()
    yield
    clear_definition_cache()


@pytest.fixture
def session_factory(tmp_path):
    db_path = tmp_path / "pipeline_engine_test.db"
    engine = create_engine(f"sqlite:///{db_path}", connect_args={"timeout": 30})
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def tenant_id(session_factory):
    session = session_factory()
    tenant = Tenant(subdomain="acme", name="Acme Education")
    session.add(tenant)
    session.commit()
    value = tenant.id
    session.close()
    return value


@pytest.fixture
def student_store():
    return InMemoryEntityStore(STUDENTS)


@pytest.fixture
def lead_store():
    return InMemoryEntityStore(LEADS)


@pytest.fixture
def task_creator():
    return RecordingTaskCreator()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def messaging():
    return RecordingMessaging()


@pytest.fixture
def collaborators(student_store, lead_store, task_creator, notifier, messaging):
    registry = EntityRegistry({EntityType.STUDENT: student_store, EntityType.LEAD: lead_store})
    return Collaborators(entities=registry, tasks=task_creator, notifications=notifier, messaging=messaging)


@pytest.fixture
def engine(collaborators, session_factory):
    return PipelineEngine(collaborators, session_factory=session_factory, locks=EntryLockRegistry(stripes=64))


@pytest.fixture
def pipeline_payload():
    return pipeline_request


@pytest.fixture
def plain_stages():
    return [
        {"id": "inquiry", "name": "Inquiry", "duration_days": 2},
        {"id": "documents", "name": "Documents", "duration_days": 5},
        {"id": "enrolled", "name": "Enrolled"},
    ]


@pytest.fixture
def pipeline(engine, tenant_id):
    return engine.create_pipeline(tenant_id, pipeline_request())
