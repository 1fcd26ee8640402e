"""In-process job store backend with the same claim semantics as PostgreSQL.

Used for single-process runs (`JOB_STORE_BACKEND=memory`) and for concurrency
tests. A single re-entrant lock stands in for row locks: every operation is
atomic, and claims are compare-and-set updates on the status or claim fields,
so concurrent callers never pick up the same row twice.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from relayq.domain import (
    CollectResult,
    CollectState,
    HealthStatus,
    InFlightHandleRecord,
    InvalidStateError,
    JobMethod,
    JobNotFoundError,
    JobRecord,
    JobStatus,
    WorkerSlotRecord,
    domain_retry_next_count,
)

from .job_store import STALE_IN_FLIGHT_ERROR


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryQueueState:
    """Shared state for the in-memory job, handle and slot stores.

    Attributes:
        lock: Guard for every read and write.
        clock: Timestamp provider, injectable for stale-age tests.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.lock = threading.RLock()
        self.clock = clock or _utc_now
        self.jobs: dict[int, JobRecord] = {}
        self.handles: dict[str, InFlightHandleRecord] = {}
        self.slots: dict[int, WorkerSlotRecord] = {}
        self.responses: dict[str, tuple[datetime, CollectResult]] = {}
        self._next_job_id = 1

    def state_allocate_job_id(self) -> int:
        with self.lock:
            job_id = self._next_job_id
            self._next_job_id += 1
            return job_id


class InMemoryJobStore:
    """Job store over `InMemoryQueueState`."""

    def __init__(self, state: InMemoryQueueState):
        if state is None:
            raise ValueError("state must not be None")
        self._state = state

    def db_job_insert(
        self,
        method: JobMethod,
        payload: dict[str, Any],
        target_path: str,
        retry_limit: int,
    ) -> JobRecord:
        with self._state.lock:
            now = self._state.clock()
            record = JobRecord(
                job_id=self._state.state_allocate_job_id(),
                method=JobMethod(method),
                payload=copy.deepcopy(payload),
                target_path=target_path,
                status=JobStatus.QUEUED,
                retry_count=0,
                retry_limit=retry_limit,
                result_body=None,
                last_error=None,
                created_at_utc=now,
                updated_at_utc=now,
            )
            self._state.jobs[record.job_id] = record
            return record

    def db_job_get_by_id(self, job_id: int) -> JobRecord | None:
        with self._state.lock:
            return self._state.jobs.get(job_id)

    def db_job_list(self, status: JobStatus | None, limit: int, offset: int) -> list[JobRecord]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        with self._state.lock:
            records = sorted(self._state.jobs.values(), key=lambda record: record.job_id, reverse=True)
        if status is not None:
            records = [record for record in records if record.status == JobStatus(status)]
        return records[offset : offset + limit]

    def db_job_count_by_status(self) -> dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        with self._state.lock:
            for record in self._state.jobs.values():
                counts[record.status.value] += 1
        return counts

    def db_job_mark_dispatching(self, job_id: int) -> JobRecord:
        def _claimable(record: JobRecord) -> bool:
            if record.status == JobStatus.QUEUED:
                return True
            return record.status == JobStatus.FAILED and record.retry_count < record.retry_limit

        return self._job_transition(job_id, _claimable, "dispatching", status=JobStatus.DISPATCHING)

    def db_job_mark_in_flight(self, job_id: int) -> JobRecord:
        return self._job_transition(
            job_id,
            lambda record: record.status == JobStatus.DISPATCHING,
            "in_flight",
            status=JobStatus.IN_FLIGHT,
        )

    def db_job_mark_complete(self, job_id: int, result_body: str | None) -> JobRecord:
        return self._job_transition(
            job_id,
            lambda record: record.status == JobStatus.IN_FLIGHT,
            "complete",
            status=JobStatus.COMPLETE,
            result_body=result_body,
            last_error=None,
        )

    def db_job_mark_failed(self, job_id: int, error_message: str | None) -> JobRecord:
        with self._state.lock:
            record = self._job_get_or_raise(job_id)
            if record.status not in (JobStatus.DISPATCHING, JobStatus.IN_FLIGHT):
                raise InvalidStateError(
                    f"job {job_id} cannot move from {record.status.value} to failed",
                    job_id=job_id,
                )
            updated = replace(
                record,
                status=JobStatus.FAILED,
                retry_count=domain_retry_next_count(record.retry_count, record.retry_limit),
                last_error=error_message,
                updated_at_utc=self._state.clock(),
            )
            self._state.jobs[job_id] = updated
            return updated

    def db_job_select_queued(self, limit: int) -> list[JobRecord]:
        return self._job_select(lambda record: record.status == JobStatus.QUEUED, limit)

    def db_job_select_retryable(self, limit: int) -> list[JobRecord]:
        return self._job_select(
            lambda record: record.status == JobStatus.FAILED and record.retry_count < record.retry_limit,
            limit,
        )

    def db_job_reap_stale(self, older_than_seconds: float) -> list[int]:
        if older_than_seconds <= 0:
            raise ValueError("older_than_seconds must be > 0")

        with self._state.lock:
            now = self._state.clock()
            cutoff = now - timedelta(seconds=older_than_seconds)
            reaped_job_ids: list[int] = []
            for job_id, record in sorted(self._state.jobs.items()):
                if record.status not in (JobStatus.DISPATCHING, JobStatus.IN_FLIGHT):
                    continue
                if record.updated_at_utc >= cutoff:
                    continue
                self._state.jobs[job_id] = replace(
                    record,
                    status=JobStatus.FAILED,
                    retry_count=domain_retry_next_count(record.retry_count, record.retry_limit),
                    last_error=STALE_IN_FLIGHT_ERROR,
                    updated_at_utc=now,
                )
                reaped_job_ids.append(job_id)

            for handle_id, handle in list(self._state.handles.items()):
                if handle.job_id in reaped_job_ids:
                    del self._state.handles[handle_id]
            return reaped_job_ids

    def _job_select(self, predicate: Callable[[JobRecord], bool], limit: int) -> list[JobRecord]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        with self._state.lock:
            matching = [record for _, record in sorted(self._state.jobs.items()) if predicate(record)]
        return matching[:limit]

    def _job_transition(
        self,
        job_id: int,
        guard: Callable[[JobRecord], bool],
        transition_label: str,
        **changes: Any,
    ) -> JobRecord:
        with self._state.lock:
            record = self._job_get_or_raise(job_id)
            if not guard(record):
                raise InvalidStateError(
                    f"job {job_id} cannot move from {record.status.value} to {transition_label}",
                    job_id=job_id,
                )
            updated = replace(record, updated_at_utc=self._state.clock(), **changes)
            self._state.jobs[job_id] = updated
            return updated

    def _job_get_or_raise(self, job_id: int) -> JobRecord:
        record = self._state.jobs.get(job_id)
        if record is None:
            raise JobNotFoundError(f"job {job_id} not found", job_id=job_id)
        return record


class InMemoryInFlightHandleStore:
    """Handle tracker over `InMemoryQueueState`."""

    def __init__(self, state: InMemoryQueueState):
        if state is None:
            raise ValueError("state must not be None")
        self._state = state

    def db_handle_record(self, handle_id: str, job_id: int) -> InFlightHandleRecord:
        with self._state.lock:
            if handle_id in self._state.handles:
                raise InvalidStateError(f"handle {handle_id} already recorded", job_id=job_id)
            if any(handle.job_id == job_id for handle in self._state.handles.values()):
                raise InvalidStateError(f"job {job_id} already has a live handle", job_id=job_id)
            record = InFlightHandleRecord(
                handle_id=handle_id,
                job_id=job_id,
                claimed_by=None,
                claimed_at_utc=None,
                created_at_utc=self._state.clock(),
            )
            self._state.handles[handle_id] = record
            return record

    def db_handle_claim_batch(self, owner: str, limit: int, claim_timeout_seconds: float) -> list[InFlightHandleRecord]:
        if not owner.strip():
            raise ValueError("owner must not be blank")
        if limit < 1:
            raise ValueError("limit must be >= 1")

        with self._state.lock:
            now = self._state.clock()
            cutoff = now - timedelta(seconds=claim_timeout_seconds)
            candidates = sorted(
                (
                    handle
                    for handle in self._state.handles.values()
                    if handle.claimed_by is None or (handle.claimed_at_utc is not None and handle.claimed_at_utc < cutoff)
                ),
                key=lambda handle: (handle.created_at_utc, handle.handle_id),
            )[:limit]
            claimed: list[InFlightHandleRecord] = []
            for handle in candidates:
                updated = replace(handle, claimed_by=owner, claimed_at_utc=now)
                self._state.handles[handle.handle_id] = updated
                claimed.append(updated)
            return claimed

    def db_handle_release_claims(self, owner: str) -> int:
        released = 0
        with self._state.lock:
            for handle_id, handle in list(self._state.handles.items()):
                if handle.claimed_by == owner:
                    self._state.handles[handle_id] = replace(handle, claimed_by=None, claimed_at_utc=None)
                    released += 1
        return released

    def db_handle_delete(self, handle_id: str, owner: str | None = None) -> bool:
        with self._state.lock:
            handle = self._state.handles.get(handle_id)
            if handle is None:
                return False
            if owner is not None and handle.claimed_by != owner:
                return False
            del self._state.handles[handle_id]
            return True

    def db_handle_get_for_job(self, job_id: int) -> InFlightHandleRecord | None:
        with self._state.lock:
            for handle in self._state.handles.values():
                if handle.job_id == job_id:
                    return handle
        return None

    def db_handle_count(self) -> int:
        with self._state.lock:
            return len(self._state.handles)


class InMemoryWorkerSlotStore:
    """Worker slot pool over `InMemoryQueueState`."""

    def __init__(self, state: InMemoryQueueState):
        if state is None:
            raise ValueError("state must not be None")
        self._state = state

    def db_worker_slot_provision(self, pool_size: int) -> list[WorkerSlotRecord]:
        if pool_size < 1:
            raise ValueError("pool_size must be >= 1")

        with self._state.lock:
            for slot_id in range(1, pool_size + 1):
                self._state.slots.setdefault(
                    slot_id,
                    WorkerSlotRecord(slot_id=slot_id, leased=False, leased_by=None, leased_at_utc=None),
                )
            for slot_id, slot in list(self._state.slots.items()):
                if slot_id > pool_size and not slot.leased:
                    del self._state.slots[slot_id]
            return self.db_worker_slot_list()

    def db_worker_slot_try_lease(self, owner: str) -> WorkerSlotRecord | None:
        if not owner.strip():
            raise ValueError("owner must not be blank")

        with self._state.lock:
            for slot_id in sorted(self._state.slots):
                slot = self._state.slots[slot_id]
                if slot.leased:
                    continue
                leased_slot = replace(slot, leased=True, leased_by=owner, leased_at_utc=self._state.clock())
                self._state.slots[slot_id] = leased_slot
                return leased_slot
        return None

    def db_worker_slot_release(self, slot_id: int, owner: str) -> bool:
        with self._state.lock:
            slot = self._state.slots.get(slot_id)
            if slot is None or slot.leased_by != owner:
                return False
            self._state.slots[slot_id] = replace(slot, leased=False, leased_by=None, leased_at_utc=None)
            return True

    def db_worker_slot_renew(self, slot_id: int, owner: str) -> bool:
        with self._state.lock:
            slot = self._state.slots.get(slot_id)
            if slot is None or slot.leased_by != owner:
                return False
            self._state.slots[slot_id] = replace(slot, leased_at_utc=self._state.clock())
            return True

    def db_worker_slot_release_stale(self, older_than_seconds: float) -> list[int]:
        if older_than_seconds <= 0:
            raise ValueError("older_than_seconds must be > 0")

        with self._state.lock:
            cutoff = self._state.clock() - timedelta(seconds=older_than_seconds)
            released: list[int] = []
            for slot_id, slot in sorted(self._state.slots.items()):
                if slot.leased and slot.leased_at_utc is not None and slot.leased_at_utc < cutoff:
                    self._state.slots[slot_id] = replace(slot, leased=False, leased_by=None, leased_at_utc=None)
                    released.append(slot_id)
            return released

    def db_worker_slot_list(self) -> list[WorkerSlotRecord]:
        with self._state.lock:
            return [self._state.slots[slot_id] for slot_id in sorted(self._state.slots)]



class InMemoryDispatchResponseStore:
    """Collected outcome store over `InMemoryQueueState`."""

    def __init__(self, state: InMemoryQueueState, retention_seconds: float = 6 * 3600.0):
        if state is None:
            raise ValueError("state must not be None")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")
        self._state = state
        self._retention_seconds = retention_seconds

    def db_response_record(
        self,
        handle_id: str,
        status_code: int | None,
        body: str | None,
        error_message: str | None,
    ) -> None:
        if (status_code is None) == (error_message is None):
            raise ValueError("exactly one of status_code and error_message must be set")

        if error_message is not None:
            result = CollectResult(state=CollectState.ERROR, error_message=error_message)
        else:
            result = CollectResult(state=CollectState.SUCCESS, status_code=status_code, body=body)

        with self._state.lock:
            now = self._state.clock()
            self._state.responses.setdefault(handle_id, (now, result))
            cutoff = now - timedelta(seconds=self._retention_seconds)
            for expired_handle_id in [key for key, (stored_at, _) in self._state.responses.items() if stored_at < cutoff]:
                del self._state.responses[expired_handle_id]

    def db_response_get(self, handle_id: str) -> CollectResult | None:
        with self._state.lock:
            entry = self._state.responses.get(handle_id)
        return entry[1] if entry is not None else None


class InMemoryDatabaseHealthService:
    """Health service for the in-memory backend."""

    def __init__(self, state: InMemoryQueueState):
        if state is None:
            raise ValueError("state must not be None")
        self._state = state

    def db_connection_label(self) -> str:
        return "memory://"

    def db_check_health(self) -> HealthStatus:
        with self._state.lock:
            slot_count = len(self._state.slots)
        if slot_count == 0:
            return HealthStatus(status="degraded", detail="worker slot pool is not provisioned")
        return HealthStatus(status="ok", detail=f"in-memory job store, {slot_count} worker slots")
