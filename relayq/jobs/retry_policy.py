"""Job-layer retry sweep re-dispatching failed jobs that still have attempts left."""

from __future__ import annotations

import structlog

from relayq.db import JobRepositoryPort
from relayq.domain import RetryDecision, domain_retry_decide

from .dispatcher import JobDispatcher
from .interfaces import DispatchPassSummary

logger = structlog.get_logger(__name__)


class RetryPolicy:
    """Flat-cadence retry sweep.

    Exhausted jobs are never selected, so they stay terminal in `failed`.
    """

    def __init__(self, job_repository: JobRepositoryPort, dispatcher: JobDispatcher, batch_size: int = 100):
        if job_repository is None:
            raise ValueError("job_repository must not be None")
        if dispatcher is None:
            raise ValueError("dispatcher must not be None")
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")

        self._job_repository = job_repository
        self._dispatcher = dispatcher
        self._batch_size = batch_size

    def job_retry_sweep(self) -> DispatchPassSummary:
        """Select retryable failed jobs and dispatch each once more.

        Returns:
            DispatchPassSummary: Counters for the sweep.

        Raises:
            RuntimeError: Raised when the job store selection fails.
        """

        candidates = self._job_repository.db_job_select_retryable(limit=self._batch_size)
        retryable = [
            job for job in candidates if domain_retry_decide(job.retry_count, job.retry_limit) == RetryDecision.RETRY
        ]
        summary = self._dispatcher.job_dispatch_many(retryable)
        if summary.selected:
            logger.info(
                "retry_sweep_finished",
                selected=summary.selected,
                dispatched=summary.dispatched,
                skipped=summary.skipped,
                failed=summary.failed,
                errored=summary.errored,
            )
        return summary
