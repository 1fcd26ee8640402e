"""Main module entrypoint for the API server and queue workers.

This module validates startup configuration and runs the selected command.
"""

import argparse
import json
import threading
from dataclasses import asdict

import structlog
import uvicorn

from relayq.bootstrap import bootstrap_create_application, bootstrap_create_runtime
from relayq.config import config_load_settings, config_setup_logging

logger = structlog.get_logger(__name__)


def main() -> None:
    """Run selected runtime command with validated startup configuration.

    Raises:
        SettingsLoadError: Raised when configuration validation fails.
    """

    argument_parser = argparse.ArgumentParser(description="relayq job queue entrypoint")
    argument_parser.add_argument(
        "command",
        nargs="?",
        default="api",
        choices=("api", "worker", "tick", "provision-workers"),
        help="Runtime command: `api` starts the server, `worker` runs the scheduler loop, "
        "`tick` runs one scheduler tick, `provision-workers` sizes the worker slot pool",
        type=str,
    )
    argument_parser.add_argument(
        "--entries",
        dest="entries",
        type=int,
        help="Staggered schedule entries for `worker`, defaults to SCHEDULER_ENTRY_COUNT",
    )
    argument_parser.add_argument(
        "--count",
        dest="count",
        type=int,
        help="Worker slot pool size for `provision-workers`, defaults to WORKER_POOL_SIZE",
    )
    parsed_arguments = argument_parser.parse_args()

    settings = config_load_settings()
    config_setup_logging(log_level=settings.log_level, log_json=settings.log_json)
    runtime = bootstrap_create_runtime(settings=settings)

    if parsed_arguments.command == "provision-workers":
        pool_size = parsed_arguments.count or settings.worker_pool_size
        slots = runtime.slot_repository.db_worker_slot_provision(pool_size=pool_size)
        logger.info("worker_slots_provisioned", pool_size=pool_size, slot_ids=[slot.slot_id for slot in slots])
        return

    if parsed_arguments.command == "tick":
        try:
            summary = runtime.scheduler.scheduler_tick()
        finally:
            runtime.transport.transport_close()
        print(json.dumps(asdict(summary), default=str))
        if summary.phase_errors:
            raise SystemExit(1)
        return

    stop_event = threading.Event()
    entry_count = parsed_arguments.entries or settings.scheduler_entry_count

    if parsed_arguments.command == "worker":
        try:
            runtime.scheduler.scheduler_run_entries(entry_count=entry_count, stop_event=stop_event)
        except KeyboardInterrupt:
            logger.info("worker_stopping")
            stop_event.set()
        finally:
            runtime.transport.transport_close()
        return

    # The in-memory store is process-local, so the API process also runs its scheduler.
    if settings.job_store_backend == "memory":
        threading.Thread(
            target=runtime.scheduler.scheduler_run_entries,
            kwargs={"entry_count": entry_count, "stop_event": stop_event},
            name="relayq-scheduler",
            daemon=True,
        ).start()

    application = bootstrap_create_application(runtime=runtime)
    try:
        uvicorn.run(
            application,
            host=settings.application_host,
            port=settings.application_port,
        )
    finally:
        stop_event.set()
        runtime.transport.transport_close()


if __name__ == "__main__":
    main()
