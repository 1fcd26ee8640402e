"""Domain models, errors and retry rules used across layer boundaries."""

from .errors import (
    DispatchError,
    InvalidStateError,
    JobNotFoundError,
    JobQueueError,
    TransportFailure,
    ValidationError,
)
from .models import (
    JOB_BODY_METHODS,
    CollectResult,
    CollectState,
    HealthStatus,
    InFlightHandleRecord,
    JobMethod,
    JobRecord,
    JobStatus,
    TransportRequest,
    WorkerSlotRecord,
)
from .retry import RetryDecision, domain_retry_decide, domain_retry_next_count

__all__ = [
    "JOB_BODY_METHODS",
    "CollectResult",
    "CollectState",
    "DispatchError",
    "HealthStatus",
    "InFlightHandleRecord",
    "InvalidStateError",
    "JobMethod",
    "JobNotFoundError",
    "JobQueueError",
    "JobRecord",
    "JobStatus",
    "RetryDecision",
    "TransportFailure",
    "TransportRequest",
    "ValidationError",
    "WorkerSlotRecord",
    "domain_retry_decide",
    "domain_retry_next_count",
]
