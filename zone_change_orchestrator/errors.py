"""
Errors - Exception hierarchy for zone change orchestration

API errors mirror what the control plane reports (transient, not found,
conflict, validation). Orchestration errors describe how a run ended when
that end is not a plain success.
"""

from typing import Any, Optional


class OrchestrationError(Exception):
    """Base class for every error raised by the orchestrator."""


class APIError(OrchestrationError):
    """An error reported by, or while talking to, the control plane."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: Any = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.retry_after = retry_after


class TransientError(APIError):
    """Network failure, timeout, rate limit or 5xx. Safe to retry."""


class NotFound(APIError):
    """The addressed resource does not exist (404)."""


class ConflictError(APIError):
    """Concurrent modification of the staging area (409)."""


class ValidationError(APIError):
    """Malformed input, either rejected locally or by the API (4xx)."""


class ZoneBusyError(ConflictError):
    """Another run for the same zone is still in flight."""


class SubmissionFailed(OrchestrationError):
    """Submission retries were exhausted and nothing was applied."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class AmbiguousState(OrchestrationError):
    """The submission may or may not have been applied."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ActivationFailed(OrchestrationError):
    """The control plane reported the activation as FAILED."""


class ConvergenceTimeout(OrchestrationError):
    """The zone did not reach a terminal activation state before the deadline."""


class ResolutionUnverified(OrchestrationError):
    """External resolution never matched the expected record values."""


class RollbackFailed(OrchestrationError):
    """The inverse change could not be applied; the zone needs manual attention."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class RunCancelled(OrchestrationError):
    """The run was cancelled or its overall deadline expired."""
