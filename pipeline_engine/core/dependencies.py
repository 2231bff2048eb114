"""Dependency providers for services and background workers."""

from __future__ import annotations

from threading import Lock

from pipeline_engine.core.exceptions import ConfigurationError
from pipeline_engine.services.interfaces import Collaborators

_collaborators: Collaborators | None = None
_collaborators_lock = Lock()


def set_collaborators(collaborators: Collaborators | None) -> None:
    """Install the process-wide collaborators used by background tasks."""
    global _collaborators
    with _collaborators_lock:
        _collaborators = collaborators


def get_collaborators() -> Collaborators:
    with _collaborators_lock:
        if _collaborators is None:
            raise ConfigurationError("Engine collaborators are not configured; call set_collaborators() first.")
        return _collaborators
