"""Database layer package for all SQL and persistence boundaries."""

from .dispatch_response import SQLAlchemyDispatchResponseService
from .health import SQLAlchemyDatabaseHealthService
from .in_flight import SQLAlchemyInFlightHandleService
from .interfaces import (
    DatabaseHealthPort,
    DispatchResponseRepositoryPort,
    InFlightHandleRepositoryPort,
    JobRepositoryPort,
    WorkerSlotRepositoryPort,
)
from .job_store import STALE_IN_FLIGHT_ERROR, SQLAlchemyJobStoreService
from .memory import (
    InMemoryDatabaseHealthService,
    InMemoryDispatchResponseStore,
    InMemoryInFlightHandleStore,
    InMemoryJobStore,
    InMemoryQueueState,
    InMemoryWorkerSlotStore,
)
from .session import db_create_engine
from .worker_slot import SQLAlchemyWorkerSlotService

__all__ = [
    "STALE_IN_FLIGHT_ERROR",
    "DatabaseHealthPort",
    "DispatchResponseRepositoryPort",
    "InFlightHandleRepositoryPort",
    "InMemoryDatabaseHealthService",
    "InMemoryDispatchResponseStore",
    "InMemoryInFlightHandleStore",
    "InMemoryJobStore",
    "InMemoryQueueState",
    "InMemoryWorkerSlotStore",
    "JobRepositoryPort",
    "SQLAlchemyDatabaseHealthService",
    "SQLAlchemyDispatchResponseService",
    "SQLAlchemyInFlightHandleService",
    "SQLAlchemyJobStoreService",
    "SQLAlchemyWorkerSlotService",
    "WorkerSlotRepositoryPort",
    "db_create_engine",
]
