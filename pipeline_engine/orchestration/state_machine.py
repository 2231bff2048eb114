"""Canonical status transition rules for pipeline entries."""

from __future__ import annotations

from collections.abc import Iterable

from pipeline_engine.core.exceptions import EntryTerminalError, InvalidTransitionError
from pipeline_engine.models.enums import StageStatus


class StateMachine:
    """Table-driven status machine.

    A status with no outgoing transitions is terminal; asking to leave it
    raises ``EntryTerminalError`` rather than ``InvalidTransitionError``.
    """

    def __init__(self, transitions: dict[StageStatus, Iterable[StageStatus]]) -> None:
        self._transitions = {status: frozenset(targets) for status, targets in transitions.items()}

    def can_transition(self, current: StageStatus, target: StageStatus) -> bool:
        return target in self._transitions.get(current, frozenset())

    def is_terminal(self, status: StageStatus) -> bool:
        return not self._transitions.get(status)

    def assert_transition(self, current: StageStatus, target: StageStatus) -> None:
        if self.is_terminal(current):
            raise EntryTerminalError(f"Entry is {current.value}; no further transitions are allowed")
        if not self.can_transition(current=current, target=target):
            raise InvalidTransitionError(f"Transition not allowed: {current.value} -> {target.value}")


_OPEN_TARGETS = (StageStatus.IN_PROGRESS, StageStatus.COMPLETED, StageStatus.CANCELLED)

ENTRY_STATUS_MACHINE = StateMachine(
    {
        StageStatus.NOT_STARTED: _OPEN_TARGETS,
        StageStatus.IN_PROGRESS: _OPEN_TARGETS,
        StageStatus.COMPLETED: (),
        StageStatus.CANCELLED: (),
    }
)

# Operator overrides may reopen a completed entry (ROLLBACK); cancelled stays final.
OVERRIDE_STATUS_MACHINE = StateMachine(
    {
        StageStatus.NOT_STARTED: _OPEN_TARGETS,
        StageStatus.IN_PROGRESS: _OPEN_TARGETS,
        StageStatus.COMPLETED: (StageStatus.IN_PROGRESS, StageStatus.COMPLETED),
        StageStatus.CANCELLED: (),
    }
)
