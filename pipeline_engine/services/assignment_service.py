"""Round-robin assignee selection backed by a per-tenant counter row."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from pipeline_engine.models.assignment_counter import AssignmentCounter
from pipeline_engine.models.base import utcnow
from pipeline_engine.services.base_service import BaseService

logger = logging.getLogger(__name__)


class AssignmentService(BaseService):
    def increment(self, tenant_id: int, counter_key: str) -> int:
        """Atomically bump the counter and return its new value.

        The UPDATE takes the row lock, so concurrent callers each observe a
        distinct value. The first caller for a key inserts the row; losing
        that insert race falls back to the UPDATE.
        """
        for _ in range(2):
            bumped = self.db.execute(
                update(AssignmentCounter)
                .where(AssignmentCounter.tenant_id == tenant_id, AssignmentCounter.counter_key == counter_key)
                .values(value=AssignmentCounter.value + 1, updated_at=utcnow())
            )
            if bumped.rowcount:
                value = self.db.execute(
                    select(AssignmentCounter.value).where(
                        AssignmentCounter.tenant_id == tenant_id, AssignmentCounter.counter_key == counter_key
                    )
                ).scalar_one()
                self.commit()
                return value
            self.db.add(AssignmentCounter(tenant_id=tenant_id, counter_key=counter_key, value=1))
            try:
                self.commit()
                return 1
            except IntegrityError:
                logger.debug(
                    "assignment.counter.insert_race",
                    extra={"event": "assignment.counter.insert_race", "tenant_id": tenant_id},
                )
        raise RuntimeError(f"Could not increment assignment counter {counter_key}")

    def next_assignee(self, tenant_id: int, counter_key: str, pool: Sequence[str]) -> str | None:
        if not pool:
            return None
        value = self.increment(tenant_id, counter_key)
        return pool[(value - 1) % len(pool)]
