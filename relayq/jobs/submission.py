"""Job-layer submission service validating and storing new jobs."""

from __future__ import annotations

import json
from typing import Any, Callable

import structlog

from relayq.db import JobRepositoryPort
from relayq.domain import JobMethod, JobRecord, ValidationError

logger = structlog.get_logger(__name__)

SubmissionHook = Callable[[JobRecord], object]


class JobSubmissionService:
    """Validates submissions, inserts them as queued jobs and fires the dispatch hook.

    Identical submissions are stored as distinct jobs; payloads are opaque and
    never deduplicated.
    """

    def __init__(
        self,
        job_repository: JobRepositoryPort,
        default_retry_limit: int = 10,
        on_submitted: SubmissionHook | None = None,
    ):
        """Initialize submission dependencies.

        Args:
            job_repository: Job store.
            default_retry_limit: Retry ceiling used when a submission omits one.
            on_submitted: Hook called exactly once with each inserted job,
                normally `JobDispatcher.job_dispatch`.

        Raises:
            ValueError: Raised when dependencies or config values are invalid.
        """

        if job_repository is None:
            raise ValueError("job_repository must not be None")
        if default_retry_limit < 1:
            raise ValueError("default_retry_limit must be >= 1")

        self._job_repository = job_repository
        self._default_retry_limit = default_retry_limit
        self._on_submitted = on_submitted

    def job_submit(
        self,
        method: JobMethod | str,
        payload: Any,
        target_path: Any,
        retry_limit: Any = None,
    ) -> int:
        """Validate and insert one job, then hand it to the dispatch hook.

        A hook failure is logged and leaves the job queued for the recovery
        dispatch sweep; it is never reported to the submitter.

        Args:
            method: Request kind, case-insensitive.
            payload: JSON object forwarded opaquely.
            target_path: Path appended to the dispatch base URL.
            retry_limit: Optional failure ceiling, defaults to the configured one.

        Returns:
            int: New job identifier.

        Raises:
            ValidationError: Raised when any field is invalid. Nothing is stored.
            RuntimeError: Raised when the job store fails.
        """

        normalized_method = self._job_validate_method(method)
        normalized_payload = self._job_validate_payload(payload)
        normalized_target_path = self._job_validate_target_path(target_path)
        normalized_retry_limit = self._job_validate_retry_limit(retry_limit)

        job = self._job_repository.db_job_insert(
            method=normalized_method,
            payload=normalized_payload,
            target_path=normalized_target_path,
            retry_limit=normalized_retry_limit,
        )
        logger.info(
            "job_submitted",
            job_id=job.job_id,
            method=job.method.value,
            target_path=job.target_path,
            retry_limit=job.retry_limit,
        )

        if self._on_submitted is not None:
            try:
                self._on_submitted(job)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("job_submit_hook_failed", job_id=job.job_id)

        return job.job_id

    def job_get(self, job_id: int) -> JobRecord | None:
        """Return the current state of one job, or None when it does not exist."""

        return self._job_repository.db_job_get_by_id(job_id)

    def _job_validate_method(self, method: JobMethod | str) -> JobMethod:
        if isinstance(method, JobMethod):
            return method
        if not isinstance(method, str):
            raise ValidationError("method must be a string")
        try:
            return JobMethod(method.strip().upper())
        except ValueError as error:
            allowed = ", ".join(member.value for member in JobMethod)
            raise ValidationError(f"unsupported method={method!r}; expected one of {allowed}") from error

    def _job_validate_payload(self, payload: Any) -> dict[str, Any]:
        if not isinstance(payload, dict):
            raise ValidationError("payload must be a JSON object")
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as error:
            raise ValidationError(f"payload is not JSON serializable: {error}") from error
        return payload

    def _job_validate_target_path(self, target_path: Any) -> str:
        if not isinstance(target_path, str) or not target_path.strip():
            raise ValidationError("target_path must be a non-blank string")
        return target_path.strip()

    def _job_validate_retry_limit(self, retry_limit: Any) -> int:
        if retry_limit is None:
            return self._default_retry_limit
        if isinstance(retry_limit, bool) or not isinstance(retry_limit, int):
            raise ValidationError("retry_limit must be an integer")
        if retry_limit < 1:
            raise ValidationError("retry_limit must be >= 1")
        return retry_limit
