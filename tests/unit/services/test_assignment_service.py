from __future__ import annotations

from pipeline_engine.models import AssignmentCounter, Tenant
from pipeline_engine.services.assignment_service import AssignmentService


def test_increment_starts_at_one_and_counts_up(db_session, tenant_id):
    service = AssignmentService(db_session)

    assert [service.increment(tenant_id, "stage:intake:task:0") for _ in range(3)] == [1, 2, 3]
    stored = db_session.query(AssignmentCounter).filter_by(tenant_id=tenant_id).one()
    assert stored.value == 3


def test_next_assignee_cycles_through_pool(db_session, tenant_id):
    service = AssignmentService(db_session)
    pool = ["amy", "ben", "cai"]

    picks = [service.next_assignee(tenant_id, "pipeline:1:stage:intake:task:0", pool) for _ in range(5)]

    assert picks == ["amy", "ben", "cai", "amy", "ben"]


def test_counters_are_independent_per_key_and_tenant(db_session, tenant_id):
    other = Tenant(subdomain="globex", name="Globex")
    db_session.add(other)
    db_session.commit()
    service = AssignmentService(db_session)

    service.increment(tenant_id, "a")
    service.increment(tenant_id, "a")

    assert service.increment(tenant_id, "b") == 1
    assert service.increment(other.id, "a") == 1
    assert service.increment(tenant_id, "a") == 3


def test_empty_pool_has_no_assignee(db_session, tenant_id):
    service = AssignmentService(db_session)

    assert service.next_assignee(tenant_id, "unused", []) is None
    assert db_session.query(AssignmentCounter).count() == 0
