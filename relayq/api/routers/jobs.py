"""Jobs API router for submission and outcome observation."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query, status
from fastapi.responses import JSONResponse

from relayq.config import AppSettings
from relayq.db import InFlightHandleRepositoryPort, JobRepositoryPort
from relayq.domain import JobRecord, JobStatus, ValidationError
from relayq.jobs import JobSubmissionService


def api_create_jobs_router(
    settings: AppSettings,
    submission_service: JobSubmissionService,
    job_repository: JobRepositoryPort,
    handle_repository: InFlightHandleRepositoryPort,
) -> APIRouter:
    """Create jobs router with submit, list, stats and detail endpoints.

    Args:
        settings: Runtime settings used for pagination defaults.
        submission_service: Job submission service.
        job_repository: Job store used for observation reads.
        handle_repository: In-flight handle store used for detail and stats reads.

    Returns:
        APIRouter: Router exposing `/jobs` APIs.

    Raises:
        ValueError: Raised when dependencies are invalid.
    """

    if settings is None:
        raise ValueError("settings must not be None")
    if submission_service is None:
        raise ValueError("submission_service must not be None")
    if job_repository is None:
        raise ValueError("job_repository must not be None")
    if handle_repository is None:
        raise ValueError("handle_repository must not be None")

    router = APIRouter(prefix="/jobs", tags=["jobs"])

    @router.post("")
    def api_job_submit(request_body: dict[str, Any] = Body(...)) -> JSONResponse:
        """Submit one job and return its identifier.

        Returns:
            JSONResponse: 201 with `job_id`, or 400 when the submission is invalid.
        """

        try:
            job_id = submission_service.job_submit(
                method=request_body.get("method"),
                payload=request_body.get("payload", {}),
                target_path=request_body.get("target_path"),
                retry_limit=request_body.get("retry_limit"),
            )
        except ValidationError as error:
            payload = {
                "status": "error",
                "code": "INVALID_JOB",
                "message": str(error),
            }
            return JSONResponse(content=payload, status_code=status.HTTP_400_BAD_REQUEST)

        job_record = submission_service.job_get(job_id)
        payload = {
            "job_id": job_id,
            "status": job_record.status.value if job_record is not None else JobStatus.QUEUED.value,
        }
        return JSONResponse(content=payload, status_code=status.HTTP_201_CREATED)

    @router.get("")
    def api_job_list(
        status_filter: str | None = Query(default=None, alias="status"),
        limit: int = Query(default=settings.api_default_limit, ge=1),
        offset: int = Query(default=0, ge=0),
    ) -> JSONResponse:
        """Return jobs ordered by newest first.

        Args:
            status_filter: Optional status to filter on.
            limit: Max rows to return, capped at the configured maximum.
            offset: Rows to skip.

        Returns:
            JSONResponse: Jobs list payload.

        Raises:
            RuntimeError: Raised when repository read fails.
        """

        normalized_status: JobStatus | None = None
        if status_filter is not None:
            try:
                normalized_status = JobStatus(status_filter.strip().lower())
            except ValueError:
                payload = {
                    "status": "error",
                    "code": "INVALID_STATUS_FILTER",
                    "message": f"unsupported status={status_filter}",
                }
                return JSONResponse(content=payload, status_code=status.HTTP_400_BAD_REQUEST)

        applied_limit = min(limit, settings.api_max_limit)
        job_rows = job_repository.db_job_list(status=normalized_status, limit=applied_limit, offset=offset)
        payload = {
            "items": [api_serialize_job_record(job_record) for job_record in job_rows],
            "page": {
                "limit": limit,
                "applied_limit": applied_limit,
                "offset": offset,
                "returned": len(job_rows),
            },
            "filters": {"status": normalized_status.value if normalized_status is not None else None},
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/stats")
    def api_job_stats() -> JSONResponse:
        """Return job counts per status and the number of live handles."""

        counts = job_repository.db_job_count_by_status()
        payload = {
            "counts": counts,
            "total": sum(counts.values()),
            "in_flight_handles": handle_repository.db_handle_count(),
        }
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    @router.get("/{job_id}")
    def api_job_detail(job_id: int) -> JSONResponse:
        """Return one job with its live handle, or 404 when absent."""

        job_record = submission_service.job_get(job_id)
        if job_record is None:
            payload = {
                "status": "error",
                "message": "job not found",
            }
            return JSONResponse(content=payload, status_code=status.HTTP_404_NOT_FOUND)

        payload = api_serialize_job_record(job_record)
        handle = handle_repository.db_handle_get_for_job(job_id)
        payload["handle_id"] = handle.handle_id if handle is not None else None
        return JSONResponse(content=payload, status_code=status.HTTP_200_OK)

    return router


def api_serialize_job_record(job_record: JobRecord) -> dict[str, object]:
    """Serialize typed job record to JSON response payload.

    Args:
        job_record: Typed job record.

    Returns:
        dict[str, object]: JSON-compatible job payload.
    """

    return {
        "job_id": job_record.job_id,
        "method": job_record.method.value,
        "target_path": job_record.target_path,
        "payload": job_record.payload,
        "status": job_record.status.value,
        "retry_count": job_record.retry_count,
        "retry_limit": job_record.retry_limit,
        "retry_exhausted": job_record.job_is_retry_exhausted(),
        "terminal": job_record.job_is_terminal(),
        "result_body": job_record.result_body,
        "last_error": job_record.last_error,
        "created_at_utc": job_record.created_at_utc.isoformat(),
        "updated_at_utc": job_record.updated_at_utc.isoformat(),
    }
