"""Exception taxonomy for the export pipeline.

Admission and validation errors are raised synchronously to the caller
when a job is created.  Execution errors are raised inside the engine and
classified as transient (retried with backoff) or permanent.
"""


class ExportError(Exception):
    """Base class for all export pipeline errors."""


class FilterValidationError(ExportError, ValueError):
    """Raised when a filter set is malformed or misses a required field.

    Args:
        message: Human-readable summary.
        errors: Field-level error details (pydantic ``errors()`` shape).
    """

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.message = message
        self.errors = errors or []
        super().__init__(message)


class AdmissionRejectedError(ExportError):
    """Raised when an owner already has the maximum number of active jobs.

    Args:
        current: Number of the owner's queued or running jobs.
        limit: Configured per-owner maximum.
    """

    def __init__(self, current: int, limit: int) -> None:
        self.current = current
        self.limit = limit
        super().__init__(f"You have {current} exports in progress. Maximum allowed: {limit}.")


class PlanningError(ExportError):
    """Raised when a stored filter set cannot be turned into a query."""


class TransientExecutionError(ExportError):
    """A failure worth retrying (I/O, renderer timeout, resource exhaustion)."""


class PermanentExecutionError(ExportError):
    """A failure that retrying cannot fix."""


class CheckpointVersionError(PermanentExecutionError):
    """Raised when a stored checkpoint was written by an incompatible schema version."""


class JobCancelledError(ExportError):
    """Raised inside the engine once a cancellation request has been observed."""


class LeaseLostError(ExportError):
    """Raised when another worker has taken over the lease on a job being executed."""


class InvalidJobStateError(ExportError):
    """Raised when a transition is requested from a state that does not allow it."""


class DownloadNotFoundError(ExportError):
    """Raised when a download is requested for a job with no artifact."""


class DownloadExpiredError(ExportError):
    """Raised when a download is requested after the link's expiry."""


_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    PermanentExecutionError,
    PlanningError,
    FilterValidationError,
    NotImplementedError,
)


def is_permanent(exc: BaseException) -> bool:
    """Whether an execution error must not be retried.

    Exception types not listed as permanent count as transient.
    """
    return isinstance(exc, _PERMANENT_TYPES)
