"""
Custom exceptions for the jobpilot pipeline.

Stage-local errors (everything except InfrastructureError) are caught at the
worker boundary, written to the Action Log and reflected in the owning
entity's status. InfrastructureError is fatal to the worker process.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    pass


class TransientUpstreamError(PipelineError):
    """Raised when a job source or provider is unreachable or times out."""

    pass


class MalformedInputError(PipelineError):
    """Raised for an unparseable posting or a schema-invalid generation."""

    pass


class TestModeViolationError(PipelineError):
    """Raised when a real transmission is attempted for a test-mode application."""

    __test__ = False


class IllegalTransitionError(PipelineError):
    """Raised when a status transition is not in the transition table."""

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Illegal {entity} transition: {current} -> {target}")


class ClaimConflictError(PipelineError):
    """Raised when a compare-and-set loses against a concurrent writer."""

    pass


class EntityNotFoundError(PipelineError):
    """Raised when a requested entity does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class ProfileNotReadyError(PipelineError):
    """Raised when the candidate profile embedding is not available yet."""

    pass


class SubmissionLimitError(PipelineError):
    """Raised when a user has reached the daily or weekly submission cap."""

    pass


class InfrastructureError(Exception):
    """Raised when the store or a work queue is unavailable."""

    pass


class DeliveryError(PipelineError):
    """Raised when a transport fails to transmit a submission."""

    pass
