"""Project-native typed exceptions for job queue failures."""

from __future__ import annotations


class JobQueueError(Exception):
    """Base exception for job queue failures.

    Attributes:
        job_id: Job the failure relates to, when known.
    """

    def __init__(self, message: str, job_id: int | None = None):
        super().__init__(message)
        self.job_id = job_id


class ValidationError(JobQueueError, ValueError):
    """Submission rejected before anything was stored."""


class InvalidStateError(JobQueueError):
    """Transition requested from a state that does not allow it."""


class JobNotFoundError(JobQueueError, LookupError):
    """No job exists for the requested identifier."""


class DispatchError(JobQueueError):
    """The outbound request could not be issued at all."""


class TransportFailure(JobQueueError):
    """The outbound request was issued but its collected outcome is a failure.

    Attributes:
        status_code: HTTP status code when the transport produced a response.
    """

    def __init__(self, message: str, job_id: int | None = None, status_code: int | None = None):
        super().__init__(message=message, job_id=job_id)
        self.status_code = status_code
