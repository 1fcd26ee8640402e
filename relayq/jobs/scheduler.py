"""Job-layer scheduler driving dispatch, reconciliation and retry sweeps on a timer."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

import structlog

from relayq.db import JobRepositoryPort

from .dispatcher import JobDispatcher
from .interfaces import DispatchPassSummary, LeaseOutcome, TickSummary
from .lease_manager import WorkerLeaseManager
from .reconciler import InFlightReconciler
from .retry_policy import RetryPolicy

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SchedulerConfig:
    """Configuration values for scheduler cadence.

    Attributes:
        tick_seconds: Interval between ticks of one entry.
        retry_sweep_interval_seconds: Minimum interval between retry sweeps.
        dispatch_batch_size: Queued jobs picked up per recovery dispatch pass.
        worker_lease_timeout_seconds: Lease age after which a slot is force-released.
        stale_in_flight_after_seconds: Age after which stuck jobs are failed, None disables.
    """

    tick_seconds: float = 60.0
    retry_sweep_interval_seconds: float = 600.0
    dispatch_batch_size: int = 100
    worker_lease_timeout_seconds: float | None = 900.0
    stale_in_flight_after_seconds: float | None = None


class QueueScheduler:
    """Periodic driver for every queue sweep.

    One tick runs the recovery dispatch pass, a leased reconciliation pass, the
    retry sweep when it is due, and stale-row maintenance. A failing phase is
    logged and recorded in the tick summary without stopping the others.
    """

    def __init__(
        self,
        dispatcher: JobDispatcher,
        reconciler: InFlightReconciler,
        lease_manager: WorkerLeaseManager,
        retry_policy: RetryPolicy,
        job_repository: JobRepositoryPort,
        config: SchedulerConfig | None = None,
        monotonic_clock: Callable[[], float] | None = None,
    ):
        """Initialize scheduler dependencies.

        Args:
            dispatcher: Job dispatcher used for the recovery pass.
            reconciler: In-flight reconciler run under a worker lease.
            lease_manager: Worker slot lease manager.
            retry_policy: Retry sweep.
            job_repository: Job store used by the stale reaper.
            config: Cadence settings.
            monotonic_clock: Optional clock for retry cadence, defaults to `time.monotonic`.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if dispatcher is None:
            raise ValueError("dispatcher must not be None")
        if reconciler is None:
            raise ValueError("reconciler must not be None")
        if lease_manager is None:
            raise ValueError("lease_manager must not be None")
        if retry_policy is None:
            raise ValueError("retry_policy must not be None")
        if job_repository is None:
            raise ValueError("job_repository must not be None")

        self._config = config or SchedulerConfig()
        if self._config.tick_seconds <= 0:
            raise ValueError("config.tick_seconds must be > 0")
        if self._config.retry_sweep_interval_seconds <= 0:
            raise ValueError("config.retry_sweep_interval_seconds must be > 0")
        if self._config.dispatch_batch_size < 1:
            raise ValueError("config.dispatch_batch_size must be >= 1")

        self._dispatcher = dispatcher
        self._reconciler = reconciler
        self._lease_manager = lease_manager
        self._retry_policy = retry_policy
        self._job_repository = job_repository
        self._monotonic_clock = monotonic_clock or time.monotonic
        self._retry_lock = threading.Lock()
        self._last_retry_sweep_at: float | None = None

    def scheduler_tick(self) -> TickSummary:
        """Run every scheduler phase once.

        Returns:
            TickSummary: What each phase did, and which phases raised.
        """

        phase_errors: list[str] = []

        dispatch_summary: DispatchPassSummary | None = self._scheduler_run_phase(
            "dispatch",
            lambda: self._dispatcher.job_dispatch_queued(batch_size=self._config.dispatch_batch_size),
            phase_errors,
        )
        reconcile_outcome: LeaseOutcome | None = self._scheduler_run_phase(
            "reconcile",
            lambda: self._lease_manager.with_leased_slot(
                lambda lease: self._reconciler.job_reconcile_all(lease_renew=lease.lease_renew)
            ),
            phase_errors,
        )

        retry_summary: DispatchPassSummary | None = None
        if self._scheduler_claim_retry_sweep():
            retry_summary = self._scheduler_run_phase("retry", self._retry_policy.job_retry_sweep, phase_errors)

        reaped_job_ids: list[int] = []
        if self._config.stale_in_flight_after_seconds is not None:
            reaped_job_ids = (
                self._scheduler_run_phase(
                    "reap_stale",
                    lambda: self._job_repository.db_job_reap_stale(
                        older_than_seconds=self._config.stale_in_flight_after_seconds
                    ),
                    phase_errors,
                )
                or []
            )
            if reaped_job_ids:
                logger.warning("scheduler_reaped_stale_jobs", job_ids=reaped_job_ids)

        released_slot_ids: list[int] = []
        if self._config.worker_lease_timeout_seconds is not None:
            released_slot_ids = (
                self._scheduler_run_phase(
                    "release_stale_leases",
                    lambda: self._lease_manager.job_release_stale_leases(
                        older_than_seconds=self._config.worker_lease_timeout_seconds
                    ),
                    phase_errors,
                )
                or []
            )

        return TickSummary(
            dispatch=dispatch_summary,
            reconcile=reconcile_outcome,
            retry=retry_summary,
            reaped_job_ids=reaped_job_ids,
            released_slot_ids=released_slot_ids,
            phase_errors=phase_errors,
        )

    def scheduler_run_forever(self, stop_event: threading.Event, initial_delay_seconds: float = 0.0) -> None:
        """Tick every `tick_seconds` until `stop_event` is set."""

        if initial_delay_seconds > 0 and stop_event.wait(initial_delay_seconds):
            return

        while not stop_event.is_set():
            started_at = self._monotonic_clock()
            summary = self.scheduler_tick()
            if summary.phase_errors:
                logger.warning("scheduler_tick_phase_errors", phases=summary.phase_errors)
            elapsed = self._monotonic_clock() - started_at
            stop_event.wait(max(0.0, self._config.tick_seconds - elapsed))

    def scheduler_run_entries(self, entry_count: int, stop_event: threading.Event) -> None:
        """Run `entry_count` staggered tick loops until `stop_event` is set.

        Entry `i` starts `i * tick_seconds / entry_count` seconds late, spreading
        ticks evenly over one interval. All entries share one retry cadence.

        Raises:
            ValueError: Raised when `entry_count` is below one.
        """

        if entry_count < 1:
            raise ValueError("entry_count must be >= 1")

        threads = [
            threading.Thread(
                target=self.scheduler_run_forever,
                kwargs={
                    "stop_event": stop_event,
                    "initial_delay_seconds": index * self._config.tick_seconds / entry_count,
                },
                name=f"relayq-scheduler-{index}",
                daemon=True,
            )
            for index in range(entry_count)
        ]
        for thread in threads:
            thread.start()
        logger.info("scheduler_entries_started", entry_count=entry_count, tick_seconds=self._config.tick_seconds)

        while any(thread.is_alive() for thread in threads):
            for thread in threads:
                thread.join(timeout=0.5)
        logger.info("scheduler_entries_stopped", entry_count=entry_count)

    def _scheduler_claim_retry_sweep(self) -> bool:
        """Return True for exactly one caller per retry interval."""

        with self._retry_lock:
            now = self._monotonic_clock()
            if (
                self._last_retry_sweep_at is not None
                and now - self._last_retry_sweep_at < self._config.retry_sweep_interval_seconds
            ):
                return False
            self._last_retry_sweep_at = now
            return True

    def _scheduler_run_phase(self, phase_name: str, phase: Callable[[], object], phase_errors: list[str]):
        try:
            return phase()
        except Exception:  # pylint: disable=broad-exception-caught
            logger.exception("scheduler_phase_failed", phase=phase_name)
            phase_errors.append(phase_name)
            return None
