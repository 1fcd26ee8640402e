"""Typed interfaces for database-layer services.

All SQL access must remain in the db package and its submodules. Every write
operation below runs as one transaction against one row (or one claimed
batch), and every shared-row selection skips rows locked by concurrent
selectors instead of waiting on them.
"""

from typing import Any, Protocol

from relayq.domain import (
    CollectResult,
    HealthStatus,
    InFlightHandleRecord,
    JobMethod,
    JobRecord,
    JobStatus,
    WorkerSlotRecord,
)


class DatabaseHealthPort(Protocol):
    """Port definition for database connectivity verification."""

    def db_connection_label(self) -> str:
        """Return a stable label for the active database connection target.

        Returns:
            str: Database target label for diagnostics.
        """

    def db_check_health(self) -> HealthStatus:
        """Check database connectivity and return deterministic health payload.

        Returns:
            HealthStatus: Database health status payload.

        Raises:
            ConnectionError: Raised when database cannot be reached.
        """


class JobRepositoryPort(Protocol):
    """Port definition for job bookkeeping."""

    def db_job_insert(
        self,
        method: JobMethod,
        payload: dict[str, Any],
        target_path: str,
        retry_limit: int,
    ) -> JobRecord:
        """Insert one job in `queued` state.

        Args:
            method: Validated request kind.
            payload: Opaque JSON object.
            target_path: Path appended to the dispatch base URL.
            retry_limit: Failure ceiling.

        Returns:
            JobRecord: Inserted row with its assigned id.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

    def db_job_get_by_id(self, job_id: int) -> JobRecord | None:
        """Fetch one job by id, or None when absent."""

    def db_job_list(self, status: JobStatus | None, limit: int, offset: int) -> list[JobRecord]:
        """List jobs ordered by id descending, optionally filtered by status."""

    def db_job_count_by_status(self) -> dict[str, int]:
        """Return job counts keyed by status value."""

    def db_job_mark_dispatching(self, job_id: int) -> JobRecord:
        """Claim a job for dispatch.

        Allowed from `queued`, or from `failed` while retries remain.

        Raises:
            JobNotFoundError: Raised when the job does not exist.
            InvalidStateError: Raised when the job is not claimable.
        """

    def db_job_mark_in_flight(self, job_id: int) -> JobRecord:
        """Transition `dispatching -> in_flight`."""

    def db_job_mark_complete(self, job_id: int, result_body: str | None) -> JobRecord:
        """Transition `in_flight -> complete` and store the response body."""

    def db_job_mark_failed(self, job_id: int, error_message: str | None) -> JobRecord:
        """Transition `dispatching | in_flight -> failed` and consume one retry."""

    def db_job_select_queued(self, limit: int) -> list[JobRecord]:
        """Select up to `limit` queued jobs, skipping rows locked by other selectors."""

    def db_job_select_retryable(self, limit: int) -> list[JobRecord]:
        """Select up to `limit` failed jobs with retries left, skipping locked rows."""

    def db_job_reap_stale(self, older_than_seconds: float) -> list[int]:
        """Fail jobs stuck in `dispatching` or `in_flight` and drop their handles.

        Returns:
            list[int]: Ids of the jobs moved to `failed`.
        """


class InFlightHandleRepositoryPort(Protocol):
    """Port definition for outstanding transport handle bookkeeping."""

    def db_handle_record(self, handle_id: str, job_id: int) -> InFlightHandleRecord:
        """Record a live handle for a job.

        Raises:
            InvalidStateError: Raised when the job already has a live handle.
        """

    def db_handle_claim_batch(self, owner: str, limit: int, claim_timeout_seconds: float) -> list[InFlightHandleRecord]:
        """Claim up to `limit` unclaimed or stale-claimed handles for one reconciliation pass."""

    def db_handle_release_claims(self, owner: str) -> int:
        """Release every claim held by `owner` and return how many were released."""

    def db_handle_delete(self, handle_id: str, owner: str | None = None) -> bool:
        """Delete one handle, restricted to the claim owner when given.

        Returns:
            bool: True when a row was deleted.
        """

    def db_handle_get_for_job(self, job_id: int) -> InFlightHandleRecord | None:
        """Return the live handle for a job, or None."""

    def db_handle_count(self) -> int:
        """Return the number of live handles."""


class WorkerSlotRepositoryPort(Protocol):
    """Port definition for the fixed worker slot pool."""

    def db_worker_slot_provision(self, pool_size: int) -> list[WorkerSlotRecord]:
        """Ensure exactly `pool_size` slots exist, keeping leased slots untouched."""

    def db_worker_slot_try_lease(self, owner: str) -> WorkerSlotRecord | None:
        """Lease one free slot without waiting, or return None when all are leased."""

    def db_worker_slot_release(self, slot_id: int, owner: str) -> bool:
        """Release a slot held by `owner`."""

    def db_worker_slot_renew(self, slot_id: int, owner: str) -> bool:
        """Refresh `leased_at_utc` on a slot `owner` still holds; False when the lease was lost."""

    def db_worker_slot_release_stale(self, older_than_seconds: float) -> list[int]:
        """Release leases older than the cutoff and return their slot ids."""

    def db_worker_slot_list(self) -> list[WorkerSlotRecord]:
        """List all slots ordered by id."""


class DispatchResponseRepositoryPort(Protocol):
    """Port definition for collected outcomes of dispatched requests.

    Outcomes are stored so that any process can collect a handle, not only the
    one that issued the request.
    """

    def db_response_record(
        self,
        handle_id: str,
        status_code: int | None,
        body: str | None,
        error_message: str | None,
    ) -> None:
        """Store the outcome for one handle and drop outcomes past retention.

        Exactly one of `status_code` and `error_message` is set.
        """

    def db_response_get(self, handle_id: str) -> CollectResult | None:
        """Return the stored outcome for one handle, or None when none was stored."""
