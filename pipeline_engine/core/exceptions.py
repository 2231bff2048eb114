"""Custom exceptions for the pipeline automation engine."""


class PipelineEngineError(Exception):
    """Base exception for the pipeline engine."""

    pass


class ConfigurationError(PipelineEngineError):
    """Raised when configuration is invalid."""

    pass


class ValidationError(PipelineEngineError):
    """Raised when a payload, stage graph or entity type is malformed."""

    pass


class NotFoundError(PipelineEngineError):
    """Raised when a resource is not found."""

    pass


class PipelineNotFoundError(NotFoundError):
    pass


class EntryNotFoundError(NotFoundError):
    pass


class UnknownStageError(NotFoundError):
    """Raised when a stage id is absent from the pipeline definition."""

    pass


class EntityNotFoundError(NotFoundError):
    pass


class ConflictError(PipelineEngineError):
    """Raised when a request conflicts with the current entry state."""

    pass


class DuplicateEntryError(ConflictError):
    """Raised when an entity already has an open entry in the pipeline."""

    pass


class EntryTerminalError(ConflictError):
    """Raised when a closed (completed or cancelled) entry would be mutated."""

    pass


class InvalidTransitionError(ConflictError):
    """Raised when a disallowed status transition is attempted."""

    pass


class ConcurrentModificationError(ConflictError):
    """Raised when optimistic-lock retries are exhausted."""

    pass


class AutomationFailure(PipelineEngineError):
    """Raised by a single automation action; never propagated past the executor."""

    pass
