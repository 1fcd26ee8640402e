"""Typed domain models shared across runtime layers.

These contracts are what the db layer returns and what the job layer and API
consume; none of them carry persistence or transport behavior.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobMethod(str, Enum):
    """Request kinds a job may dispatch."""

    GET = "GET"
    POST = "POST"
    DELETE = "DELETE"


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    DISPATCHING = "dispatching"
    IN_FLIGHT = "in_flight"
    COMPLETE = "complete"
    FAILED = "failed"


JOB_BODY_METHODS: frozenset[JobMethod] = frozenset({JobMethod.POST})


@dataclass(frozen=True)
class HealthStatus:
    """Health response contract used by health-check surfaces.

    Attributes:
        status: Overall status text for service health.
        detail: Additional message suitable for operational diagnostics.
    """

    status: str
    detail: str


@dataclass(frozen=True)
class JobRecord:
    """Persistence model for one job row.

    Attributes:
        job_id: Monotonic job identifier.
        method: Request kind.
        payload: Opaque JSON object supplied at submission.
        target_path: Opaque path appended to the dispatch base URL.
        status: Current lifecycle state.
        retry_count: Recorded failures so far.
        retry_limit: Failure ceiling after which the job is terminal.
        result_body: Response body, set only when complete.
        last_error: Last recorded failure reason.
        created_at_utc: Insert timestamp.
        updated_at_utc: Last transition timestamp.
    """

    job_id: int
    method: JobMethod
    payload: dict[str, Any]
    target_path: str
    status: JobStatus
    retry_count: int
    retry_limit: int
    result_body: str | None
    last_error: str | None
    created_at_utc: datetime
    updated_at_utc: datetime

    def job_is_terminal(self) -> bool:
        """Return whether no further transition can happen automatically."""

        if self.status == JobStatus.COMPLETE:
            return True
        return self.job_is_retry_exhausted()

    def job_is_retry_exhausted(self) -> bool:
        """Return whether the job failed and used up every retry."""

        return self.status == JobStatus.FAILED and self.retry_count >= self.retry_limit


@dataclass(frozen=True)
class InFlightHandleRecord:
    """Correlation between one outstanding transport handle and its job.

    Attributes:
        handle_id: Opaque handle returned by the transport.
        job_id: Job the handle belongs to.
        claimed_by: Reconciliation pass currently holding the handle.
        claimed_at_utc: When the claim was taken.
        created_at_utc: When the handle was recorded.
    """

    handle_id: str
    job_id: int
    claimed_by: str | None
    claimed_at_utc: datetime | None
    created_at_utc: datetime


@dataclass(frozen=True)
class WorkerSlotRecord:
    """One permit in the fixed worker slot pool.

    Attributes:
        slot_id: Slot identity, 1..N.
        leased: Whether a scheduler tick currently holds the slot.
        leased_by: Owner label of the current lease.
        leased_at_utc: When the current lease was taken.
    """

    slot_id: int
    leased: bool
    leased_by: str | None
    leased_at_utc: datetime | None


@dataclass(frozen=True)
class TransportRequest:
    """Outbound request descriptor built from one job.

    Attributes:
        method: HTTP method.
        url: Absolute destination URL.
        headers: Request headers.
        body: Encoded request body, None for body-less methods.
        query_parameters: Query string parameters.
        timeout_ms: Per-request timeout.
    """

    method: str
    url: str
    headers: dict[str, str]
    body: bytes | None
    query_parameters: dict[str, str] = field(default_factory=dict)
    timeout_ms: int = 3000


class CollectState(str, Enum):
    """Outcome kinds reported by a transport collect call."""

    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CollectResult:
    """Result of polling a transport handle.

    Attributes:
        state: Outcome kind.
        status_code: HTTP status code when state is success.
        body: Response body text when state is success.
        error_message: Transport error text when state is error.
    """

    state: CollectState
    status_code: int | None = None
    body: str | None = None
    error_message: str | None = None

    def collect_is_success_status(self) -> bool:
        """Return whether the response is a transport success in the 2xx range."""

        if self.state != CollectState.SUCCESS or self.status_code is None:
            return False
        return 200 <= self.status_code <= 299
