"""Per-entry mutual exclusion for in-process callers."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from pipeline_engine.core.config import get_config


class EntryLockRegistry:
    """Fixed pool of re-entrant locks striped by entry id.

    Two entries may share a stripe. Writers in other processes are
    serialised by the ``revision`` version check on the row instead.
    """

    def __init__(self, stripes: int | None = None) -> None:
        count = stripes or get_config().ENTRY_LOCK_STRIPES
        self._locks = [threading.RLock() for _ in range(count)]

    def lock_for(self, entry_id: int) -> threading.RLock:
        return self._locks[hash(entry_id) % len(self._locks)]

    @contextmanager
    def hold(self, entry_id: int) -> Iterator[None]:
        lock = self.lock_for(entry_id)
        with lock:
            yield


default_lock_registry = EntryLockRegistry()
