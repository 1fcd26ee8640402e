"""Application bootstrap wiring for startup validation and dependency assembly."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import FastAPI

from relayq.adapters import HttpxTransport, TransportPort
from relayq.api import create_api_application
from relayq.config import AppSettings, config_load_settings
from relayq.db import (
    DatabaseHealthPort,
    DispatchResponseRepositoryPort,
    InFlightHandleRepositoryPort,
    InMemoryDatabaseHealthService,
    InMemoryDispatchResponseStore,
    InMemoryInFlightHandleStore,
    InMemoryJobStore,
    InMemoryQueueState,
    InMemoryWorkerSlotStore,
    JobRepositoryPort,
    SQLAlchemyDatabaseHealthService,
    SQLAlchemyDispatchResponseService,
    SQLAlchemyInFlightHandleService,
    SQLAlchemyJobStoreService,
    SQLAlchemyWorkerSlotService,
    WorkerSlotRepositoryPort,
    db_create_engine,
)
from relayq.jobs import (
    DispatcherConfig,
    InFlightReconciler,
    JobDispatcher,
    JobSubmissionService,
    QueueScheduler,
    ReconcilerConfig,
    RetryPolicy,
    SchedulerConfig,
    WorkerLeaseManager,
)


@dataclass(frozen=True)
class QueueRuntime:
    """Fully wired queue components sharing one store backend and one transport.

    Attributes:
        settings: Validated settings the runtime was built from.
        db_health_service: Store health service.
        job_repository: Job store.
        handle_repository: In-flight handle store.
        slot_repository: Worker slot pool.
        transport: Outbound fire/collect transport.
        submission_service: Submission entry point with the dispatch hook attached.
        scheduler: Periodic sweep driver.
    """

    settings: AppSettings
    db_health_service: DatabaseHealthPort
    job_repository: JobRepositoryPort
    handle_repository: InFlightHandleRepositoryPort
    slot_repository: WorkerSlotRepositoryPort
    transport: TransportPort
    submission_service: JobSubmissionService
    scheduler: QueueScheduler


def bootstrap_create_runtime(settings: AppSettings | None = None) -> QueueRuntime:
    """Assemble every queue component for the configured store backend.

    The in-memory backend provisions its worker slots immediately; the
    PostgreSQL backend expects `provision-workers` to have run once.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
    """

    resolved_settings = settings or config_load_settings()

    if resolved_settings.job_store_backend == "memory":
        state = InMemoryQueueState()
        db_health_service: DatabaseHealthPort = InMemoryDatabaseHealthService(state=state)
        job_repository: JobRepositoryPort = InMemoryJobStore(state=state)
        handle_repository: InFlightHandleRepositoryPort = InMemoryInFlightHandleStore(state=state)
        slot_repository: WorkerSlotRepositoryPort = InMemoryWorkerSlotStore(state=state)
        response_repository: DispatchResponseRepositoryPort = InMemoryDispatchResponseStore(
            state=state,
            retention_seconds=resolved_settings.transport_response_ttl_seconds,
        )
        slot_repository.db_worker_slot_provision(pool_size=resolved_settings.worker_pool_size)
    else:
        engine = db_create_engine(database_url=resolved_settings.database_url)
        db_health_service = SQLAlchemyDatabaseHealthService(engine=engine)
        job_repository = SQLAlchemyJobStoreService(engine=engine)
        handle_repository = SQLAlchemyInFlightHandleService(engine=engine)
        slot_repository = SQLAlchemyWorkerSlotService(engine=engine)
        response_repository = SQLAlchemyDispatchResponseService(
            engine=engine,
            retention_seconds=resolved_settings.transport_response_ttl_seconds,
        )

    transport = HttpxTransport(
        response_repository=response_repository,
        max_workers=resolved_settings.transport_max_workers,
    )
    dispatcher = JobDispatcher(
        job_repository=job_repository,
        handle_repository=handle_repository,
        transport=transport,
        config=DispatcherConfig(
            base_url=resolved_settings.dispatch_base_url,
            timeout_ms=resolved_settings.dispatch_timeout_ms,
            default_headers=dict(resolved_settings.dispatch_default_headers),
        ),
    )
    reconciler = InFlightReconciler(
        job_repository=job_repository,
        handle_repository=handle_repository,
        transport=transport,
        config=ReconcilerConfig(
            batch_size=resolved_settings.reconcile_batch_size,
            claim_timeout_seconds=resolved_settings.handle_claim_timeout_seconds,
        ),
    )
    lease_manager = WorkerLeaseManager(
        slot_repository=slot_repository,
        renew_interval_seconds=resolved_settings.worker_lease_renew_seconds,
    )
    retry_policy = RetryPolicy(
        job_repository=job_repository,
        dispatcher=dispatcher,
        batch_size=resolved_settings.retry_sweep_batch_size,
    )
    scheduler = QueueScheduler(
        dispatcher=dispatcher,
        reconciler=reconciler,
        lease_manager=lease_manager,
        retry_policy=retry_policy,
        job_repository=job_repository,
        config=SchedulerConfig(
            tick_seconds=resolved_settings.scheduler_tick_seconds,
            retry_sweep_interval_seconds=resolved_settings.retry_sweep_interval_seconds,
            dispatch_batch_size=resolved_settings.dispatch_batch_size,
            worker_lease_timeout_seconds=resolved_settings.worker_lease_timeout_seconds,
            stale_in_flight_after_seconds=resolved_settings.stale_in_flight_after_seconds,
        ),
    )
    submission_service = JobSubmissionService(
        job_repository=job_repository,
        default_retry_limit=resolved_settings.job_default_retry_limit,
        on_submitted=dispatcher.job_dispatch,
    )

    return QueueRuntime(
        settings=resolved_settings,
        db_health_service=db_health_service,
        job_repository=job_repository,
        handle_repository=handle_repository,
        slot_repository=slot_repository,
        transport=transport,
        submission_service=submission_service,
        scheduler=scheduler,
    )


def bootstrap_create_application(runtime: QueueRuntime | None = None) -> FastAPI:
    """Assemble the API application after validating startup configuration.

    Returns:
        FastAPI: Fully initialized FastAPI application instance.

    Raises:
        SettingsLoadError: Raised when startup configuration validation fails.
    """

    resolved_runtime = runtime or bootstrap_create_runtime()
    return create_api_application(
        settings=resolved_runtime.settings,
        db_health_service=resolved_runtime.db_health_service,
        job_repository=resolved_runtime.job_repository,
        handle_repository=resolved_runtime.handle_repository,
        slot_repository=resolved_runtime.slot_repository,
        submission_service=resolved_runtime.submission_service,
    )
