"""FastAPI application factory for the job queue service."""

from fastapi import FastAPI

from relayq import __version__
from relayq.config import AppSettings
from relayq.db import (
    DatabaseHealthPort,
    InFlightHandleRepositoryPort,
    JobRepositoryPort,
    WorkerSlotRepositoryPort,
)
from relayq.jobs import JobSubmissionService

from .routers import api_create_health_router, api_create_jobs_router, api_create_workers_router


def create_api_application(
    settings: AppSettings,
    db_health_service: DatabaseHealthPort,
    job_repository: JobRepositoryPort,
    handle_repository: InFlightHandleRepositoryPort,
    slot_repository: WorkerSlotRepositoryPort,
    submission_service: JobSubmissionService,
) -> FastAPI:
    """Create the FastAPI application instance for the service.

    Args:
        settings: Validated application settings.
        db_health_service: Health service used by the health endpoint.
        job_repository: Job store for observation endpoints.
        handle_repository: In-flight handle store for job detail and stats.
        slot_repository: Worker slot pool for the workers endpoint.
        submission_service: Submission service for `POST /jobs`.

    Returns:
        FastAPI: Framework application instance.
    """
    application = FastAPI(title="relayq", version=__version__)

    @application.get("/", tags=["foundation"])
    def foundation_index() -> dict[str, str]:
        return {
            "service": "relayq",
            "status": "ready",
            "environment": settings.environment_name,
        }

    application.include_router(api_create_health_router(db_health_service=db_health_service))
    application.include_router(
        api_create_jobs_router(
            settings=settings,
            submission_service=submission_service,
            job_repository=job_repository,
            handle_repository=handle_repository,
        )
    )
    application.include_router(api_create_workers_router(slot_repository=slot_repository))

    return application
