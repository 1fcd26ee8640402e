"""Tests for worker slot leasing around reconciliation passes."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from relayq.db import InMemoryQueueState, InMemoryWorkerSlotStore
from relayq.jobs import WorkerLease, WorkerLeaseManager


def _lease_build(pool_size: int) -> tuple[WorkerLeaseManager, InMemoryWorkerSlotStore]:
    slot_store = InMemoryWorkerSlotStore(state=InMemoryQueueState())
    slot_store.db_worker_slot_provision(pool_size=pool_size)
    return WorkerLeaseManager(slot_repository=slot_store, owner_label="test-worker"), slot_store


def test_jobs_lease_manager_runs_work_and_releases_slot() -> None:
    """Run the work under a slot and release it afterwards."""

    lease_manager, slot_store = _lease_build(pool_size=1)

    outcome = lease_manager.with_leased_slot(lambda lease: "done")

    assert outcome.acquired is True
    assert outcome.slot_id == 1
    assert outcome.result == "done"
    assert slot_store.db_worker_slot_list()[0].leased is False


def test_jobs_lease_manager_releases_slot_when_work_raises() -> None:
    """Release the slot even when the work raises."""

    lease_manager, slot_store = _lease_build(pool_size=1)

    def _explode(lease: WorkerLease) -> None:
        raise RuntimeError("reconcile failed")

    with pytest.raises(RuntimeError):
        lease_manager.with_leased_slot(_explode)

    assert slot_store.db_worker_slot_list()[0].leased is False


def test_jobs_lease_manager_bounds_concurrency_to_pool_size() -> None:
    """Never run more than N passes at once; the (N+1)th returns immediately without running."""

    pool_size = 3
    lease_manager, _ = _lease_build(pool_size=pool_size)
    release_event = threading.Event()
    started = threading.Semaphore(0)
    active_lock = threading.Lock()
    active = {"now": 0, "peak": 0}

    def _hold(lease: WorkerLease) -> str:
        with active_lock:
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
        started.release()
        release_event.wait(timeout=5)
        with active_lock:
            active["now"] -= 1
        return "held"

    outcomes = []
    outcomes_lock = threading.Lock()

    def _run() -> None:
        outcome = lease_manager.with_leased_slot(_hold)
        with outcomes_lock:
            outcomes.append(outcome)

    holders = [threading.Thread(target=_run) for _ in range(pool_size)]
    for thread in holders:
        thread.start()
    for _ in range(pool_size):
        assert started.acquire(timeout=5)

    calls = []
    extra_outcome = lease_manager.with_leased_slot(lambda lease: calls.append("ran"))

    release_event.set()
    for thread in holders:
        thread.join()

    assert extra_outcome.acquired is False
    assert calls == []
    assert active["peak"] == pool_size
    assert all(outcome.acquired for outcome in outcomes)
    assert sorted(outcome.slot_id for outcome in outcomes) == [1, 2, 3]


def test_jobs_lease_manager_returns_unacquired_without_slots() -> None:
    """Return acquired=False when the pool has no slots at all."""

    slot_store = InMemoryWorkerSlotStore(state=InMemoryQueueState())
    lease_manager = WorkerLeaseManager(slot_repository=slot_store)

    assert lease_manager.with_leased_slot(lambda lease: "never").acquired is False


def test_jobs_lease_manager_rejects_blank_owner_label() -> None:
    """Reject a blank owner label."""

    with pytest.raises(ValueError):
        WorkerLeaseManager(slot_repository=InMemoryWorkerSlotStore(state=InMemoryQueueState()), owner_label=" ")


class _ManualClocks:
    """Adjustable UTC and monotonic clocks moved together."""

    def __init__(self) -> None:
        self.utc_now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.monotonic_now = 1000.0

    def clock_utc(self) -> datetime:
        return self.utc_now

    def clock_monotonic(self) -> float:
        return self.monotonic_now

    def clock_advance(self, seconds: float) -> None:
        self.utc_now += timedelta(seconds=seconds)
        self.monotonic_now += seconds


def _lease_build_with_clocks(
    pool_size: int,
    renew_interval_seconds: float,
) -> tuple[WorkerLeaseManager, InMemoryWorkerSlotStore, _ManualClocks]:
    clocks = _ManualClocks()
    slot_store = InMemoryWorkerSlotStore(state=InMemoryQueueState(clock=clocks.clock_utc))
    slot_store.db_worker_slot_provision(pool_size=pool_size)
    lease_manager = WorkerLeaseManager(
        slot_repository=slot_store,
        owner_label="test-worker",
        renew_interval_seconds=renew_interval_seconds,
        monotonic_clock=clocks.clock_monotonic,
    )
    return lease_manager, slot_store, clocks


def test_jobs_lease_manager_renewed_lease_survives_stale_release() -> None:
    """Keep the pool bound when a renewed pass outlives the lease timeout."""

    lease_manager, _, clocks = _lease_build_with_clocks(pool_size=1, renew_interval_seconds=60.0)
    observed: dict[str, object] = {}

    def _long_pass(lease: WorkerLease) -> str:
        for _ in range(16):
            clocks.clock_advance(61)
            assert lease.lease_renew() is True
        observed["released"] = lease_manager.job_release_stale_leases(older_than_seconds=900)
        observed["second"] = lease_manager.with_leased_slot(lambda second_lease: "overlapping")
        return "finished"

    outcome = lease_manager.with_leased_slot(_long_pass)

    assert outcome.result == "finished"
    assert observed["released"] == []
    assert observed["second"].acquired is False


def test_jobs_lease_manager_reports_lost_lease_after_stale_release() -> None:
    """Report the lease as lost once a silent pass is force-released."""

    lease_manager, slot_store, clocks = _lease_build_with_clocks(pool_size=1, renew_interval_seconds=60.0)
    observed: dict[str, object] = {}

    def _silent_pass(lease: WorkerLease) -> None:
        clocks.clock_advance(901)
        observed["released"] = lease_manager.job_release_stale_leases(older_than_seconds=900)
        observed["renewed"] = lease.lease_renew()
        observed["renewed_again"] = lease.lease_renew()

    lease_manager.with_leased_slot(_silent_pass)

    assert observed["released"] == [1]
    assert observed["renewed"] is False
    assert observed["renewed_again"] is False
    assert slot_store.db_worker_slot_list()[0].leased is False


def test_jobs_lease_manager_throttles_renewals() -> None:
    """Touch the slot store only once per renew interval."""

    lease_manager, slot_store, clocks = _lease_build_with_clocks(pool_size=1, renew_interval_seconds=60.0)
    leased_at: list[datetime] = []

    def _pass(lease: WorkerLease) -> None:
        clocks.clock_advance(10)
        lease.lease_renew()
        leased_at.append(slot_store.db_worker_slot_list()[0].leased_at_utc)
        clocks.clock_advance(55)
        lease.lease_renew()
        leased_at.append(slot_store.db_worker_slot_list()[0].leased_at_utc)

    lease_manager.with_leased_slot(_pass)

    assert leased_at[0] == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert leased_at[1] == datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=65)
