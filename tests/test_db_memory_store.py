"""Tests for the in-memory job, handle, slot and response stores.

These cover the transition guards and claim rules that the PostgreSQL
services implement with guarded UPDATE statements and SKIP LOCKED.
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from relayq.db import (
    STALE_IN_FLIGHT_ERROR,
    InMemoryDatabaseHealthService,
    InMemoryDispatchResponseStore,
    InMemoryInFlightHandleStore,
    InMemoryJobStore,
    InMemoryQueueState,
    InMemoryWorkerSlotStore,
)
from relayq.domain import CollectState, InvalidStateError, JobMethod, JobNotFoundError, JobStatus


class _ManualClock:
    """Adjustable UTC clock for stale-age tests."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _store_build(clock: _ManualClock | None = None):
    state = InMemoryQueueState(clock=clock)
    return (
        state,
        InMemoryJobStore(state=state),
        InMemoryInFlightHandleStore(state=state),
        InMemoryWorkerSlotStore(state=state),
    )


def _store_insert(job_store: InMemoryJobStore, retry_limit: int = 3):
    return job_store.db_job_insert(
        method=JobMethod.POST,
        payload={"x": 1},
        target_path="/ingest",
        retry_limit=retry_limit,
    )


def test_db_memory_insert_assigns_monotonic_ids_in_queued_state() -> None:
    """Insert identical submissions as distinct queued jobs."""

    _, job_store, _, _ = _store_build()

    first_job = _store_insert(job_store)
    second_job = _store_insert(job_store)

    assert second_job.job_id > first_job.job_id
    assert first_job.status == JobStatus.QUEUED
    assert first_job.retry_count == 0
    assert job_store.db_job_get_by_id(first_job.job_id) == first_job
    assert job_store.db_job_get_by_id(999) is None


def test_db_memory_full_success_lifecycle() -> None:
    """Walk queued, dispatching, in_flight, complete."""

    _, job_store, _, _ = _store_build()
    job = _store_insert(job_store)

    job_store.db_job_mark_dispatching(job.job_id)
    job_store.db_job_mark_in_flight(job.job_id)
    completed_job = job_store.db_job_mark_complete(job.job_id, result_body='{"ok":true}')

    assert completed_job.status == JobStatus.COMPLETE
    assert completed_job.result_body == '{"ok":true}'
    assert completed_job.job_is_terminal()


def test_db_memory_mark_dispatching_is_compare_and_set() -> None:
    """Let exactly one claimer move a queued job to dispatching."""

    _, job_store, _, _ = _store_build()
    job = _store_insert(job_store)

    job_store.db_job_mark_dispatching(job.job_id)

    with pytest.raises(InvalidStateError):
        job_store.db_job_mark_dispatching(job.job_id)


def test_db_memory_mark_dispatching_races_have_one_winner() -> None:
    """Allow one winner among many concurrent claimers."""

    _, job_store, _, _ = _store_build()
    job = _store_insert(job_store)
    winners: list[int] = []
    barrier = threading.Barrier(8)

    def _claim(worker_index: int) -> None:
        barrier.wait()
        try:
            job_store.db_job_mark_dispatching(job.job_id)
        except InvalidStateError:
            return
        winners.append(worker_index)

    threads = [threading.Thread(target=_claim, args=(index,)) for index in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1


def test_db_memory_guarded_transitions_reject_wrong_states() -> None:
    """Reject transitions that skip states, and unknown ids."""

    _, job_store, _, _ = _store_build()
    job = _store_insert(job_store)

    with pytest.raises(InvalidStateError):
        job_store.db_job_mark_in_flight(job.job_id)
    with pytest.raises(InvalidStateError):
        job_store.db_job_mark_complete(job.job_id, result_body="x")
    with pytest.raises(InvalidStateError):
        job_store.db_job_mark_failed(job.job_id, error_message="x")
    with pytest.raises(JobNotFoundError):
        job_store.db_job_mark_dispatching(12345)


def test_db_memory_mark_failed_increments_and_caps_retry_count() -> None:
    """Increment retry_count on failure and stop at retry_limit."""

    _, job_store, _, _ = _store_build()
    job = _store_insert(job_store, retry_limit=2)

    for expected_count in (1, 2):
        job_store.db_job_mark_dispatching(job.job_id)
        failed_job = job_store.db_job_mark_failed(job.job_id, error_message="HTTP 500")
        assert failed_job.retry_count == expected_count
        assert failed_job.retry_count <= failed_job.retry_limit

    assert failed_job.job_is_retry_exhausted()
    with pytest.raises(InvalidStateError):
        job_store.db_job_mark_dispatching(job.job_id)


def test_db_memory_selections_filter_by_state() -> None:
    """Select queued jobs and failed jobs with retries left only."""

    _, job_store, _, _ = _store_build()
    queued_job = _store_insert(job_store)
    retryable_job = _store_insert(job_store, retry_limit=2)
    exhausted_job = _store_insert(job_store, retry_limit=1)
    for job in (retryable_job, exhausted_job):
        job_store.db_job_mark_dispatching(job.job_id)
        job_store.db_job_mark_failed(job.job_id, error_message="boom")

    assert [job.job_id for job in job_store.db_job_select_queued(limit=10)] == [queued_job.job_id]
    assert [job.job_id for job in job_store.db_job_select_retryable(limit=10)] == [retryable_job.job_id]
    assert job_store.db_job_count_by_status() == {
        "queued": 1,
        "dispatching": 0,
        "in_flight": 0,
        "complete": 0,
        "failed": 2,
    }


def test_db_memory_list_orders_newest_first_with_filter() -> None:
    """List jobs newest first, with optional status filter and paging."""

    _, job_store, _, _ = _store_build()
    job_ids = [_store_insert(job_store).job_id for _ in range(3)]
    job_store.db_job_mark_dispatching(job_ids[0])

    assert [job.job_id for job in job_store.db_job_list(status=None, limit=2, offset=0)] == [job_ids[2], job_ids[1]]
    assert [job.job_id for job in job_store.db_job_list(status=JobStatus.DISPATCHING, limit=10, offset=0)] == [
        job_ids[0]
    ]


def test_db_memory_handle_unique_per_job() -> None:
    """Reject a second live handle for the same job."""

    _, job_store, handle_store, _ = _store_build()
    job = _store_insert(job_store)
    handle_store.db_handle_record(handle_id="h-1", job_id=job.job_id)

    with pytest.raises(InvalidStateError):
        handle_store.db_handle_record(handle_id="h-2", job_id=job.job_id)
    assert handle_store.db_handle_count() == 1
    assert handle_store.db_handle_get_for_job(job.job_id).handle_id == "h-1"


def test_db_memory_handle_claims_partition_and_release() -> None:
    """Give concurrent owners disjoint handles and release claims by owner."""

    _, job_store, handle_store, _ = _store_build()
    for index in range(4):
        job = _store_insert(job_store)
        handle_store.db_handle_record(handle_id=f"h-{index}", job_id=job.job_id)

    first_batch = handle_store.db_handle_claim_batch(owner="a", limit=3, claim_timeout_seconds=300)
    second_batch = handle_store.db_handle_claim_batch(owner="b", limit=3, claim_timeout_seconds=300)

    assert {handle.handle_id for handle in first_batch}.isdisjoint({handle.handle_id for handle in second_batch})
    assert len(first_batch) + len(second_batch) == 4
    assert handle_store.db_handle_delete("h-0", owner="b") is False
    assert handle_store.db_handle_release_claims(owner="a") == 3
    assert len(handle_store.db_handle_claim_batch(owner="c", limit=10, claim_timeout_seconds=300)) == 3


def test_db_memory_handle_stale_claims_are_reclaimable() -> None:
    """Let a new owner take over claims older than the claim timeout."""

    clock = _ManualClock()
    _, job_store, handle_store, _ = _store_build(clock=clock)
    job = _store_insert(job_store)
    handle_store.db_handle_record(handle_id="h-1", job_id=job.job_id)
    handle_store.db_handle_claim_batch(owner="crashed", limit=1, claim_timeout_seconds=60)

    assert handle_store.db_handle_claim_batch(owner="next", limit=1, claim_timeout_seconds=60) == []
    clock.advance(61)
    reclaimed = handle_store.db_handle_claim_batch(owner="next", limit=1, claim_timeout_seconds=60)
    assert [handle.claimed_by for handle in reclaimed] == ["next"]


def test_db_memory_reap_stale_fails_stuck_jobs_and_drops_handles() -> None:
    """Fail jobs stuck in flight past the cutoff and delete their handle."""

    clock = _ManualClock()
    _, job_store, handle_store, _ = _store_build(clock=clock)
    stuck_job = _store_insert(job_store)
    job_store.db_job_mark_dispatching(stuck_job.job_id)
    job_store.db_job_mark_in_flight(stuck_job.job_id)
    handle_store.db_handle_record(handle_id="h-stuck", job_id=stuck_job.job_id)
    clock.advance(600)
    fresh_job = _store_insert(job_store)
    job_store.db_job_mark_dispatching(fresh_job.job_id)

    reaped_job_ids = job_store.db_job_reap_stale(older_than_seconds=300)

    reaped_job = job_store.db_job_get_by_id(stuck_job.job_id)
    assert reaped_job_ids == [stuck_job.job_id]
    assert reaped_job.status == JobStatus.FAILED
    assert reaped_job.retry_count == 1
    assert reaped_job.last_error == STALE_IN_FLIGHT_ERROR
    assert handle_store.db_handle_get_for_job(stuck_job.job_id) is None
    assert job_store.db_job_get_by_id(fresh_job.job_id).status == JobStatus.DISPATCHING


def test_db_memory_worker_slots_lease_until_pool_exhausted() -> None:
    """Lease each slot once, then return None without waiting."""

    _, _, _, slot_store = _store_build()
    slot_store.db_worker_slot_provision(pool_size=2)

    first_slot = slot_store.db_worker_slot_try_lease(owner="a")
    second_slot = slot_store.db_worker_slot_try_lease(owner="b")

    assert {first_slot.slot_id, second_slot.slot_id} == {1, 2}
    assert slot_store.db_worker_slot_try_lease(owner="c") is None
    assert slot_store.db_worker_slot_release(slot_id=first_slot.slot_id, owner="b") is False
    assert slot_store.db_worker_slot_release(slot_id=first_slot.slot_id, owner="a") is True
    assert slot_store.db_worker_slot_try_lease(owner="c").slot_id == first_slot.slot_id


def test_db_memory_worker_slot_provision_is_idempotent_and_shrinks_unleased() -> None:
    """Add missing slots and drop unleased slots above the pool size."""

    _, _, _, slot_store = _store_build()
    slot_store.db_worker_slot_provision(pool_size=3)
    slot_store.db_worker_slot_provision(pool_size=3)
    for _ in range(3):
        slot_store.db_worker_slot_try_lease(owner="holder")
    slot_store.db_worker_slot_release(slot_id=1, owner="holder")
    slot_store.db_worker_slot_release(slot_id=2, owner="holder")

    slots = slot_store.db_worker_slot_provision(pool_size=1)

    assert [slot.slot_id for slot in slots] == [1, 3]


def test_db_memory_worker_slot_release_stale() -> None:
    """Force-release leases older than the cutoff."""

    clock = _ManualClock()
    _, _, _, slot_store = _store_build(clock=clock)
    slot_store.db_worker_slot_provision(pool_size=1)
    slot_store.db_worker_slot_try_lease(owner="crashed")
    clock.advance(1000)

    assert slot_store.db_worker_slot_release_stale(older_than_seconds=900) == [1]
    assert slot_store.db_worker_slot_list()[0].leased is False


def test_db_memory_worker_slot_renew_keeps_live_lease() -> None:
    """Refresh a held lease so stale release skips it, and refuse other owners."""

    clock = _ManualClock()
    _, _, _, slot_store = _store_build(clock=clock)
    slot_store.db_worker_slot_provision(pool_size=1)
    slot_store.db_worker_slot_try_lease(owner="busy")
    clock.advance(800)

    assert slot_store.db_worker_slot_renew(slot_id=1, owner="busy") is True
    assert slot_store.db_worker_slot_renew(slot_id=1, owner="other") is False
    clock.advance(200)

    assert slot_store.db_worker_slot_release_stale(older_than_seconds=900) == []
    assert slot_store.db_worker_slot_list()[0].leased_by == "busy"


def test_db_memory_dispatch_response_store_keeps_first_outcome_and_prunes() -> None:
    """Keep the first stored outcome per handle and prune past retention."""

    clock = _ManualClock()
    state = InMemoryQueueState(clock=clock)
    response_store = InMemoryDispatchResponseStore(state=state, retention_seconds=60)

    response_store.db_response_record(handle_id="h-1", status_code=200, body="ok", error_message=None)
    response_store.db_response_record(handle_id="h-1", status_code=None, body=None, error_message="late")
    stored = response_store.db_response_get("h-1")
    assert stored.state == CollectState.SUCCESS
    assert stored.status_code == 200

    clock.advance(120)
    response_store.db_response_record(handle_id="h-2", status_code=None, body=None, error_message="boom")
    assert response_store.db_response_get("h-1") is None
    assert response_store.db_response_get("h-2").state == CollectState.ERROR

    with pytest.raises(ValueError):
        response_store.db_response_record(handle_id="h-3", status_code=None, body=None, error_message=None)


def test_db_memory_health_reports_degraded_without_slots() -> None:
    """Report degraded until the slot pool is provisioned."""

    state, _, _, slot_store = _store_build()
    health_service = InMemoryDatabaseHealthService(state=state)

    assert health_service.db_check_health().status == "degraded"
    slot_store.db_worker_slot_provision(pool_size=1)
    assert health_service.db_check_health().status == "ok"
