"""Job-layer worker lease manager bounding concurrent reconciliation passes."""

from __future__ import annotations

import os
import socket
import time
from typing import Callable
from uuid import uuid4

import structlog

from relayq.db import WorkerSlotRepositoryPort

from .interfaces import LeaseOutcome

logger = structlog.get_logger(__name__)


class WorkerLease:
    """One held worker slot, renewed by the work running under it.

    Stale-lease release frees slots by `leased_at_utc` age, so long-running
    work calls `lease_renew()` between units of work. A False return means the
    slot is no longer held and the work must stop taking on more.
    """

    def __init__(
        self,
        slot_repository: WorkerSlotRepositoryPort,
        slot_id: int,
        owner: str,
        renew_interval_seconds: float,
        monotonic_clock: Callable[[], float],
    ):
        self.slot_id = slot_id
        self.owner = owner
        self._slot_repository = slot_repository
        self._renew_interval_seconds = renew_interval_seconds
        self._monotonic_clock = monotonic_clock
        self._renewed_at = monotonic_clock()
        self._lost = False

    def lease_renew(self) -> bool:
        """Refresh the lease when the renew interval has passed.

        Returns:
            bool: True while the slot is still held.

        Raises:
            RuntimeError: Raised when the slot store fails.
        """

        if self._lost:
            return False

        now = self._monotonic_clock()
        if now - self._renewed_at < self._renew_interval_seconds:
            return True

        if not self._slot_repository.db_worker_slot_renew(slot_id=self.slot_id, owner=self.owner):
            self._lost = True
            logger.warning("worker_lease_lost", slot_id=self.slot_id, owner=self.owner)
            return False
        self._renewed_at = now
        return True

    def lease_is_lost(self) -> bool:
        return self._lost


class WorkerLeaseManager:
    """Runs work under one leased worker slot, or not at all.

    Leasing never waits: when every slot is taken the call returns right away
    and the work is dropped for this tick.
    """

    def __init__(
        self,
        slot_repository: WorkerSlotRepositoryPort,
        owner_label: str | None = None,
        renew_interval_seconds: float = 60.0,
        monotonic_clock: Callable[[], float] | None = None,
    ):
        """Initialize lease manager dependencies.

        Args:
            slot_repository: Worker slot pool.
            owner_label: Optional lease owner prefix, defaults to `<hostname>-<pid>`.
            renew_interval_seconds: Minimum interval between lease renewals in the store.
            monotonic_clock: Clock used to throttle renewals.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if slot_repository is None:
            raise ValueError("slot_repository must not be None")
        if owner_label is not None and not owner_label.strip():
            raise ValueError("owner_label must not be blank")
        if renew_interval_seconds < 0:
            raise ValueError("renew_interval_seconds must be >= 0")

        self._slot_repository = slot_repository
        self._owner_label = owner_label or f"{socket.gethostname()}-{os.getpid()}"
        self._renew_interval_seconds = renew_interval_seconds
        self._monotonic_clock = monotonic_clock or time.monotonic

    def with_leased_slot(self, fn: Callable[[WorkerLease], object]) -> LeaseOutcome:
        """Lease a free slot, run `fn` with the lease, then release the slot.

        Args:
            fn: Work to run while the slot is held. It receives the `WorkerLease`
                and should call `lease_renew()` between units of work.

        Returns:
            LeaseOutcome: `acquired=False` when no slot was free, otherwise the
            leased slot id and the value `fn` returned.

        Raises:
            RuntimeError: Raised when the slot store fails.
            Exception: Whatever `fn` raises, after the slot is released.
        """

        owner = f"{self._owner_label}-{uuid4().hex[:12]}"
        slot = self._slot_repository.db_worker_slot_try_lease(owner=owner)
        if slot is None:
            logger.info("worker_lease_unavailable", owner=owner)
            return LeaseOutcome(acquired=False)

        logger.debug("worker_lease_acquired", slot_id=slot.slot_id, owner=owner)
        lease = WorkerLease(
            slot_repository=self._slot_repository,
            slot_id=slot.slot_id,
            owner=owner,
            renew_interval_seconds=self._renew_interval_seconds,
            monotonic_clock=self._monotonic_clock,
        )
        try:
            result = fn(lease)
        finally:
            released = self._slot_repository.db_worker_slot_release(slot_id=slot.slot_id, owner=owner)
            if not released and not lease.lease_is_lost():
                logger.warning("worker_lease_lost", slot_id=slot.slot_id, owner=owner)

        return LeaseOutcome(acquired=True, slot_id=slot.slot_id, result=result)

    def job_release_stale_leases(self, older_than_seconds: float) -> list[int]:
        """Force-release leases held longer than `older_than_seconds`."""

        released_slot_ids = self._slot_repository.db_worker_slot_release_stale(older_than_seconds=older_than_seconds)
        if released_slot_ids:
            logger.warning("worker_lease_stale_released", slot_ids=released_slot_ids)
        return released_slot_ids
