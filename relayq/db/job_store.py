"""Database service for job lifecycle persistence and skip-locked selection."""

from __future__ import annotations

import json
from typing import Any, Final

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from relayq.domain import InvalidStateError, JobMethod, JobNotFoundError, JobRecord, JobStatus

from .interfaces import JobRepositoryPort

_JOB_COLUMNS: Final[str] = (
    "job_id, method, payload, target_path, status, retry_count, retry_limit, "
    "result_body, last_error, created_at_utc, updated_at_utc"
)

STALE_IN_FLIGHT_ERROR: Final[str] = "STALE_IN_FLIGHT"


class SQLAlchemyJobStoreService(JobRepositoryPort):
    """SQLAlchemy-backed job store.

    State transitions are compare-and-set updates guarded by the current
    status, so a transition that loses a race surfaces as `InvalidStateError`
    instead of overwriting another worker's progress.
    """

    def __init__(self, engine: Engine):
        """Initialize job store.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_job_insert(
        self,
        method: JobMethod,
        payload: dict[str, Any],
        target_path: str,
        retry_limit: int,
    ) -> JobRecord:
        """Insert one queued job.

        Args:
            method: Validated request kind.
            payload: Opaque JSON object.
            target_path: Path appended to the dispatch base URL.
            retry_limit: Failure ceiling.

        Returns:
            JobRecord: Inserted row.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                row = connection.execute(
                    text(
                        "INSERT INTO job (method, payload, target_path, status, retry_count, retry_limit) "
                        "VALUES (:method, CAST(:payload AS jsonb), :target_path, 'queued', 0, :retry_limit) "
                        f"RETURNING {_JOB_COLUMNS}"
                    ),
                    {
                        "method": JobMethod(method).value,
                        "payload": json.dumps(payload),
                        "target_path": target_path,
                        "retry_limit": retry_limit,
                    },
                ).mappings().one()
                return self._map_job_record(row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to insert job") from error

    def db_job_get_by_id(self, job_id: int) -> JobRecord | None:
        """Fetch one job by id.

        Raises:
            RuntimeError: Raised when database read fails.
        """

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text(f"SELECT {_JOB_COLUMNS} FROM job WHERE job_id = :job_id"),
                    {"job_id": job_id},
                ).mappings().first()
                if row is None:
                    return None
                return self._map_job_record(row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to fetch job by id") from error

    def db_job_list(self, status: JobStatus | None, limit: int, offset: int) -> list[JobRecord]:
        """List jobs newest first.

        Args:
            status: Optional status filter.
            limit: Maximum number of rows.
            offset: Number of rows to skip.

        Returns:
            list[JobRecord]: Ordered job rows.

        Raises:
            ValueError: Raised when limit or offset are invalid.
            RuntimeError: Raised when database read fails.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")
        if offset < 0:
            raise ValueError("offset must be >= 0")

        if status is None:
            query = text(f"SELECT {_JOB_COLUMNS} FROM job ORDER BY job_id DESC LIMIT :limit OFFSET :offset")
            parameters: dict[str, Any] = {"limit": limit, "offset": offset}
        else:
            query = text(
                f"SELECT {_JOB_COLUMNS} FROM job WHERE status = :status "
                "ORDER BY job_id DESC LIMIT :limit OFFSET :offset"
            )
            parameters = {"status": JobStatus(status).value, "limit": limit, "offset": offset}

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(query, parameters).mappings().all()
                return [self._map_job_record(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list jobs") from error

    def db_job_count_by_status(self) -> dict[str, int]:
        """Return job counts keyed by every known status value."""

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(
                    text("SELECT status, COUNT(*) AS job_count FROM job GROUP BY status")
                ).mappings().all()
        except SQLAlchemyError as error:
            raise RuntimeError("failed to count jobs by status") from error

        counts = {status.value: 0 for status in JobStatus}
        for row in rows:
            counts[row["status"]] = int(row["job_count"])
        return counts

    def db_job_mark_dispatching(self, job_id: int) -> JobRecord:
        """Claim a queued or retryable failed job for dispatch.

        Raises:
            JobNotFoundError: Raised when the job does not exist.
            InvalidStateError: Raised when another worker already claimed it or it is terminal.
            RuntimeError: Raised when persistence fails.
        """

        return self._db_job_transition(
            job_id=job_id,
            statement=(
                "UPDATE job SET status = 'dispatching', updated_at_utc = now() "
                "WHERE job_id = :job_id "
                "AND (status = 'queued' OR (status = 'failed' AND retry_count < retry_limit)) "
                f"RETURNING {_JOB_COLUMNS}"
            ),
            parameters={"job_id": job_id},
            transition_label="dispatching",
        )

    def db_job_mark_in_flight(self, job_id: int) -> JobRecord:
        """Move a dispatching job to in_flight."""

        return self._db_job_transition(
            job_id=job_id,
            statement=(
                "UPDATE job SET status = 'in_flight', updated_at_utc = now() "
                "WHERE job_id = :job_id AND status = 'dispatching' "
                f"RETURNING {_JOB_COLUMNS}"
            ),
            parameters={"job_id": job_id},
            transition_label="in_flight",
        )

    def db_job_mark_complete(self, job_id: int, result_body: str | None) -> JobRecord:
        """Move an in_flight job to complete with its response body."""

        return self._db_job_transition(
            job_id=job_id,
            statement=(
                "UPDATE job SET status = 'complete', result_body = :result_body, last_error = NULL, "
                "updated_at_utc = now() "
                "WHERE job_id = :job_id AND status = 'in_flight' "
                f"RETURNING {_JOB_COLUMNS}"
            ),
            parameters={"job_id": job_id, "result_body": result_body},
            transition_label="complete",
        )

    def db_job_mark_failed(self, job_id: int, error_message: str | None) -> JobRecord:
        """Move a dispatching or in_flight job to failed and consume one retry."""

        return self._db_job_transition(
            job_id=job_id,
            statement=(
                "UPDATE job SET status = 'failed', "
                "retry_count = LEAST(retry_count + 1, retry_limit), "
                "last_error = :error_message, updated_at_utc = now() "
                "WHERE job_id = :job_id AND status IN ('dispatching', 'in_flight') "
                f"RETURNING {_JOB_COLUMNS}"
            ),
            parameters={"job_id": job_id, "error_message": error_message},
            transition_label="failed",
        )

    def db_job_select_queued(self, limit: int) -> list[JobRecord]:
        """Select queued jobs with `FOR UPDATE SKIP LOCKED`."""

        return self._db_job_select_skip_locked(
            where_clause="status = 'queued'",
            limit=limit,
            context_label="queued",
        )

    def db_job_select_retryable(self, limit: int) -> list[JobRecord]:
        """Select failed jobs that still have retries, with `FOR UPDATE SKIP LOCKED`."""

        return self._db_job_select_skip_locked(
            where_clause="status = 'failed' AND retry_count < retry_limit",
            limit=limit,
            context_label="retryable",
        )

    def db_job_reap_stale(self, older_than_seconds: float) -> list[int]:
        """Fail jobs stuck in dispatching or in_flight past the cutoff.

        Args:
            older_than_seconds: Minimum age of the last transition.

        Returns:
            list[int]: Reaped job ids.

        Raises:
            ValueError: Raised when the cutoff is not positive.
            RuntimeError: Raised when persistence fails.
        """

        if older_than_seconds <= 0:
            raise ValueError("older_than_seconds must be > 0")

        try:
            with self._engine.begin() as connection:
                reaped_rows = connection.execute(
                    text(
                        "UPDATE job SET status = 'failed', "
                        "retry_count = LEAST(retry_count + 1, retry_limit), "
                        "last_error = :error_message, updated_at_utc = now() "
                        "WHERE job_id IN ("
                        "SELECT job_id FROM job "
                        "WHERE status IN ('dispatching', 'in_flight') "
                        "AND updated_at_utc < now() - (:older_than_seconds * interval '1 second') "
                        "FOR UPDATE SKIP LOCKED"
                        ") "
                        "RETURNING job_id"
                    ),
                    {"older_than_seconds": older_than_seconds, "error_message": STALE_IN_FLIGHT_ERROR},
                ).mappings().all()
                reaped_job_ids = sorted(int(row["job_id"]) for row in reaped_rows)
                if reaped_job_ids:
                    connection.execute(
                        text("DELETE FROM in_flight_handle WHERE job_id = ANY(:job_ids)"),
                        {"job_ids": reaped_job_ids},
                    )
                return reaped_job_ids
        except SQLAlchemyError as error:
            raise RuntimeError("failed to reap stale jobs") from error

    def _db_job_select_skip_locked(self, where_clause: str, limit: int, context_label: str) -> list[JobRecord]:
        """Run one skip-locked selection with a fixed where clause.

        Args:
            where_clause: Fixed SQL predicate from this module, never caller input.
            limit: Maximum number of rows.
            context_label: Label for error reporting.

        Returns:
            list[JobRecord]: Selected rows in id order.

        Raises:
            ValueError: Raised when limit is invalid.
            RuntimeError: Raised when database read fails.
        """

        if limit < 1:
            raise ValueError("limit must be >= 1")

        try:
            with self._engine.begin() as connection:
                rows = connection.execute(
                    text(
                        f"SELECT {_JOB_COLUMNS} FROM job WHERE {where_clause} "
                        "ORDER BY job_id LIMIT :limit FOR UPDATE SKIP LOCKED"
                    ),
                    {"limit": limit},
                ).mappings().all()
                return [self._map_job_record(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError(f"failed to select {context_label} jobs") from error

    def _db_job_transition(
        self,
        job_id: int,
        statement: str,
        parameters: dict[str, Any],
        transition_label: str,
    ) -> JobRecord:
        """Apply one guarded status update and classify a miss.

        Args:
            job_id: Target job.
            statement: Guarded UPDATE with RETURNING clause.
            parameters: Bound parameters.
            transition_label: Target state label for error messages.

        Returns:
            JobRecord: Updated row.

        Raises:
            JobNotFoundError: Raised when the job does not exist.
            InvalidStateError: Raised when the guard did not match.
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                row = connection.execute(text(statement), parameters).mappings().first()
                if row is not None:
                    return self._map_job_record(row)

                current_row = connection.execute(
                    text("SELECT status FROM job WHERE job_id = :job_id"),
                    {"job_id": job_id},
                ).mappings().first()
        except SQLAlchemyError as error:
            raise RuntimeError(f"failed to mark job {transition_label}") from error

        if current_row is None:
            raise JobNotFoundError(f"job {job_id} not found", job_id=job_id)
        raise InvalidStateError(
            f"job {job_id} cannot move from {current_row['status']} to {transition_label}",
            job_id=job_id,
        )

    def _map_job_record(self, row: Any) -> JobRecord:
        """Map SQLAlchemy row mapping to typed job record.

        Raises:
            TypeError: Raised when the payload column is not a JSON object.
        """

        payload_value = row["payload"]
        if isinstance(payload_value, str):
            payload_value = json.loads(payload_value)
        if not isinstance(payload_value, dict):
            raise TypeError("job.payload must be a JSON object")

        return JobRecord(
            job_id=int(row["job_id"]),
            method=JobMethod(row["method"]),
            payload=payload_value,
            target_path=row["target_path"],
            status=JobStatus(row["status"]),
            retry_count=int(row["retry_count"]),
            retry_limit=int(row["retry_limit"]),
            result_body=row["result_body"],
            last_error=row["last_error"],
            created_at_utc=row["created_at_utc"],
            updated_at_utc=row["updated_at_utc"],
        )
