"""Job-layer dispatcher turning one claimed job into one outbound request."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Final, Iterable
from urllib.parse import quote

import structlog

from relayq.adapters import TransportError, TransportPort
from relayq.db import InFlightHandleRepositoryPort, JobRepositoryPort
from relayq.domain import (
    JOB_BODY_METHODS,
    DispatchError,
    InvalidStateError,
    JobNotFoundError,
    JobRecord,
    TransportRequest,
)

from .interfaces import DispatchPassSummary

logger = structlog.get_logger(__name__)

_OUTCOME_DISPATCHED: Final[str] = "dispatched"
_OUTCOME_SKIPPED: Final[str] = "skipped"
_OUTCOME_FAILED: Final[str] = "failed"


@dataclass(frozen=True)
class DispatcherConfig:
    """Configuration values for outbound request construction.

    Attributes:
        base_url: Fixed destination that target paths are appended to.
        timeout_ms: Per-request timeout.
        default_headers: Headers added to every request.
    """

    base_url: str
    timeout_ms: int = 3000
    default_headers: dict[str, str] = field(default_factory=dict)


class JobDispatcher:
    """Claims a job, issues its request and records the returned handle."""

    def __init__(
        self,
        job_repository: JobRepositoryPort,
        handle_repository: InFlightHandleRepositoryPort,
        transport: TransportPort,
        config: DispatcherConfig,
    ):
        """Initialize dispatcher dependencies.

        Args:
            job_repository: Job store.
            handle_repository: In-flight handle tracker.
            transport: Fire/collect transport.
            config: Request construction settings.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if job_repository is None:
            raise ValueError("job_repository must not be None")
        if handle_repository is None:
            raise ValueError("handle_repository must not be None")
        if transport is None:
            raise ValueError("transport must not be None")
        if not config.base_url.strip():
            raise ValueError("config.base_url must not be blank")
        if config.timeout_ms < 1:
            raise ValueError("config.timeout_ms must be >= 1")

        self._job_repository = job_repository
        self._handle_repository = handle_repository
        self._transport = transport
        self._config = config

    def job_dispatch(self, job: JobRecord) -> str | None:
        """Dispatch one job.

        Args:
            job: Queued job, or failed job with retries left.

        Returns:
            str | None: Recorded handle, or None when the job was claimed
            elsewhere or the request could not be issued.

        Raises:
            RuntimeError: Raised when the job store fails.
        """

        _, handle_id = self._job_dispatch_with_outcome(job)
        return handle_id

    def job_dispatch_queued(self, batch_size: int) -> DispatchPassSummary:
        """Dispatch every queued job from one skip-locked selection.

        This is the recovery sweep for jobs whose submission hook never fired.
        """

        return self.job_dispatch_many(self._job_repository.db_job_select_queued(limit=batch_size))

    def job_dispatch_many(self, jobs: Iterable[JobRecord]) -> DispatchPassSummary:
        """Dispatch a batch of jobs, isolating failures per job."""

        counters = {"selected": 0, _OUTCOME_DISPATCHED: 0, _OUTCOME_SKIPPED: 0, _OUTCOME_FAILED: 0, "errored": 0}
        for job in jobs:
            counters["selected"] += 1
            try:
                outcome, _ = self._job_dispatch_with_outcome(job)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("dispatch_job_errored", job_id=job.job_id)
                counters["errored"] += 1
                continue
            counters[outcome] += 1

        return DispatchPassSummary(
            selected=counters["selected"],
            dispatched=counters[_OUTCOME_DISPATCHED],
            skipped=counters[_OUTCOME_SKIPPED],
            failed=counters[_OUTCOME_FAILED],
            errored=counters["errored"],
        )

    def job_build_request(self, job: JobRecord) -> TransportRequest:
        """Build the outbound request descriptor for one job.

        Raises:
            DispatchError: Raised when the payload cannot be encoded.
        """

        headers = {"Content-Type": "application/json", **self._config.default_headers}
        url = f"{self._config.base_url.rstrip('/')}/{quote(job.target_path.lstrip('/'), safe='/-._~')}"

        try:
            if job.method in JOB_BODY_METHODS:
                return TransportRequest(
                    method=job.method.value,
                    url=url,
                    headers=headers,
                    body=json.dumps(job.payload).encode("utf-8"),
                    timeout_ms=self._config.timeout_ms,
                )
            return TransportRequest(
                method=job.method.value,
                url=url,
                headers=headers,
                body=None,
                query_parameters={key: self._job_encode_query_value(value) for key, value in job.payload.items()},
                timeout_ms=self._config.timeout_ms,
            )
        except (TypeError, ValueError) as error:
            raise DispatchError(f"payload cannot be encoded: {error}", job_id=job.job_id) from error

    def _job_dispatch_with_outcome(self, job: JobRecord) -> tuple[str, str | None]:
        """Run the claim, send, record sequence and classify the outcome."""

        try:
            claimed_job = self._job_repository.db_job_mark_dispatching(job.job_id)
        except (InvalidStateError, JobNotFoundError) as error:
            logger.info("dispatch_job_skipped", job_id=job.job_id, reason=str(error))
            return _OUTCOME_SKIPPED, None

        try:
            handle_id = self._job_send(claimed_job)
        except DispatchError as error:
            failed_job = self._job_repository.db_job_mark_failed(
                claimed_job.job_id,
                error_message=f"DISPATCH_ERROR: {error}",
            )
            logger.warning(
                "dispatch_job_failed",
                job_id=failed_job.job_id,
                retry_count=failed_job.retry_count,
                retry_limit=failed_job.retry_limit,
                error=str(error),
            )
            return _OUTCOME_FAILED, None

        self._job_repository.db_job_mark_in_flight(claimed_job.job_id)
        self._handle_repository.db_handle_record(handle_id=handle_id, job_id=claimed_job.job_id)
        logger.info("dispatch_job_in_flight", job_id=claimed_job.job_id, handle_id=handle_id)
        return _OUTCOME_DISPATCHED, handle_id

    def _job_send(self, job: JobRecord) -> str:
        """Issue the request and map every send-side failure to `DispatchError`."""

        request = self.job_build_request(job)
        try:
            return self._transport.transport_send(request)
        except (TransportError, ConnectionError, TimeoutError, ValueError) as error:
            raise DispatchError(str(error) or type(error).__name__, job_id=job.job_id) from error

    def _job_encode_query_value(self, value: Any) -> str:
        if isinstance(value, str):
            return value
        return json.dumps(value)
