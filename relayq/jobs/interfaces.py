"""Typed result contracts for job-layer orchestration passes."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DispatchPassSummary:
    """Outcome counters for one pass over queued or retryable jobs.

    Attributes:
        selected: Jobs returned by the selection.
        dispatched: Jobs that reached in_flight with a recorded handle.
        skipped: Jobs another worker claimed first.
        failed: Jobs routed to failed because the request could not be issued.
        errored: Jobs whose processing raised unexpectedly.
    """

    selected: int = 0
    dispatched: int = 0
    skipped: int = 0
    failed: int = 0
    errored: int = 0


@dataclass(frozen=True)
class ReconcileSummary:
    """Outcome counters for one reconciliation pass.

    Attributes:
        claimed: Handles claimed by the pass.
        completed: Handles resolved to complete jobs.
        failed: Handles resolved to failed jobs.
        pending: Handles left in place because no outcome was available.
        discarded: Handles dropped because their job had already left in_flight.
        errored: Handles whose processing raised unexpectedly.
    """

    claimed: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    discarded: int = 0
    errored: int = 0

    def reconcile_resolved_count(self) -> int:
        """Return how many handles this pass resolved."""

        return self.completed + self.failed


@dataclass(frozen=True)
class LeaseOutcome:
    """Result of one attempt to run work under a worker slot.

    Attributes:
        acquired: Whether a slot was leased and the work ran.
        slot_id: Leased slot id when acquired.
        result: Return value of the leased work.
    """

    acquired: bool
    slot_id: int | None = None
    result: object | None = None


@dataclass(frozen=True)
class TickSummary:
    """What one scheduler tick did.

    Attributes:
        dispatch: Recovery dispatch pass counters.
        reconcile: Leased reconciliation outcome.
        retry: Retry sweep counters when the sweep was due.
        reaped_job_ids: Jobs failed by the stale reaper.
        released_slot_ids: Slots force-released for stale leases.
        phase_errors: Phase names that raised.
    """

    dispatch: DispatchPassSummary | None = None
    reconcile: LeaseOutcome | None = None
    retry: DispatchPassSummary | None = None
    reaped_job_ids: list[int] = field(default_factory=list)
    released_slot_ids: list[int] = field(default_factory=list)
    phase_errors: list[str] = field(default_factory=list)
