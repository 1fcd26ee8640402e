"""Job-layer reconciler resolving in-flight handles to terminal job outcomes."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Callable
from uuid import uuid4

import structlog

from relayq.adapters import TransportPort
from relayq.db import InFlightHandleRepositoryPort, JobRepositoryPort
from relayq.domain import (
    CollectResult,
    CollectState,
    InFlightHandleRecord,
    InvalidStateError,
    JobNotFoundError,
    TransportFailure,
)

from .interfaces import ReconcileSummary

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReconcilerConfig:
    """Configuration values for reconciliation passes.

    Attributes:
        batch_size: Handles claimed per batch.
        claim_timeout_seconds: Age after which an abandoned claim may be taken over.
    """

    batch_size: int = 100
    claim_timeout_seconds: float = 300.0


class InFlightReconciler:
    """Collects outcomes for live handles and records them on their jobs.

    Each pass claims batches of handles under its own owner label, so passes
    running concurrently on other worker slots see disjoint handle sets.
    Handles without an outcome stay claimed until the pass ends, then are
    released for the next pass.
    """

    def __init__(
        self,
        job_repository: JobRepositoryPort,
        handle_repository: InFlightHandleRepositoryPort,
        transport: TransportPort,
        config: ReconcilerConfig | None = None,
    ):
        if job_repository is None:
            raise ValueError("job_repository must not be None")
        if handle_repository is None:
            raise ValueError("handle_repository must not be None")
        if transport is None:
            raise ValueError("transport must not be None")

        self._job_repository = job_repository
        self._handle_repository = handle_repository
        self._transport = transport
        self._config = config or ReconcilerConfig()
        if self._config.batch_size < 1:
            raise ValueError("config.batch_size must be >= 1")
        self._worker_label = f"{socket.gethostname()}-{os.getpid()}"

    def job_reconcile_all(self, lease_renew: Callable[[], bool] | None = None) -> ReconcileSummary:
        """Run one reconciliation pass over every claimable handle.

        Args:
            lease_renew: Called before each batch and each handle. When it returns
                False the worker slot is gone, so the pass stops and releases
                its remaining claims.

        Returns:
            ReconcileSummary: Counters for the pass.

        Raises:
            RuntimeError: Raised when claiming or releasing handles fails.
        """

        owner = f"{self._worker_label}-{uuid4().hex[:12]}"
        counters = {"claimed": 0, "completed": 0, "failed": 0, "pending": 0, "discarded": 0, "errored": 0}

        try:
            while self._job_lease_held(lease_renew, owner):
                batch = self._handle_repository.db_handle_claim_batch(
                    owner=owner,
                    limit=self._config.batch_size,
                    claim_timeout_seconds=self._config.claim_timeout_seconds,
                )
                if not batch:
                    break
                counters["claimed"] += len(batch)
                for handle in batch:
                    if not self._job_lease_held(lease_renew, owner):
                        break
                    try:
                        outcome = self._job_reconcile_handle(handle=handle, owner=owner)
                    except Exception:  # pylint: disable=broad-exception-caught
                        logger.exception("reconcile_handle_errored", handle_id=handle.handle_id, job_id=handle.job_id)
                        counters["errored"] += 1
                        continue
                    counters[outcome] += 1
                else:
                    continue
                break
        finally:
            self._handle_repository.db_handle_release_claims(owner=owner)

        summary = ReconcileSummary(**counters)
        if summary.claimed:
            logger.info(
                "reconcile_pass_finished",
                owner=owner,
                claimed=summary.claimed,
                completed=summary.completed,
                failed=summary.failed,
                pending=summary.pending,
                discarded=summary.discarded,
                errored=summary.errored,
            )
        return summary

    def _job_lease_held(self, lease_renew: Callable[[], bool] | None, owner: str) -> bool:
        if lease_renew is None or lease_renew():
            return True
        logger.warning("reconcile_pass_stopped_lease_lost", owner=owner)
        return False

    def _job_reconcile_handle(self, handle: InFlightHandleRecord, owner: str) -> str:
        """Resolve one claimed handle and return its counter name."""

        collect_result = self._transport.transport_collect(handle.handle_id)
        if collect_result.state in (CollectState.PENDING, CollectState.UNKNOWN):
            return "pending"

        try:
            if collect_result.collect_is_success_status():
                self._job_repository.db_job_mark_complete(handle.job_id, result_body=collect_result.body)
                outcome = "completed"
                logger.info("reconcile_job_complete", job_id=handle.job_id, status_code=collect_result.status_code)
            else:
                failure = self._job_build_failure(handle=handle, collect_result=collect_result)
                failed_job = self._job_repository.db_job_mark_failed(handle.job_id, error_message=str(failure))
                outcome = "failed"
                logger.warning(
                    "reconcile_job_failed",
                    job_id=handle.job_id,
                    status_code=failure.status_code,
                    retry_count=failed_job.retry_count,
                    retry_limit=failed_job.retry_limit,
                )
        except (InvalidStateError, JobNotFoundError) as error:
            logger.warning("reconcile_job_not_in_flight", job_id=handle.job_id, reason=str(error))
            outcome = "discarded"

        self._handle_repository.db_handle_delete(handle.handle_id, owner=owner)
        return outcome

    def _job_build_failure(self, handle: InFlightHandleRecord, collect_result: CollectResult) -> TransportFailure:
        if collect_result.state == CollectState.SUCCESS:
            return TransportFailure(
                f"HTTP {collect_result.status_code}",
                job_id=handle.job_id,
                status_code=collect_result.status_code,
            )
        return TransportFailure(
            f"TRANSPORT_ERROR: {collect_result.error_message or 'unknown error'}",
            job_id=handle.job_id,
        )
