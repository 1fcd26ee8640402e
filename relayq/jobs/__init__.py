"""Job layer package for queue orchestration."""

from .dispatcher import DispatcherConfig, JobDispatcher
from .interfaces import DispatchPassSummary, LeaseOutcome, ReconcileSummary, TickSummary
from .lease_manager import WorkerLease, WorkerLeaseManager
from .reconciler import InFlightReconciler, ReconcilerConfig
from .retry_policy import RetryPolicy
from .scheduler import QueueScheduler, SchedulerConfig
from .submission import JobSubmissionService

__all__ = [
	"DispatchPassSummary",
	"DispatcherConfig",
	"InFlightReconciler",
	"JobDispatcher",
	"JobSubmissionService",
	"LeaseOutcome",
	"QueueScheduler",
	"ReconcileSummary",
	"ReconcilerConfig",
	"RetryPolicy",
	"SchedulerConfig",
	"TickSummary",
	"WorkerLease",
	"WorkerLeaseManager",
]
