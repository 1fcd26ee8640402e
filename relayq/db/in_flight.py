"""Database service for outstanding transport handles and reconciliation claims."""

from __future__ import annotations

from typing import Any, Final

from sqlalchemy import Engine, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from relayq.domain import InFlightHandleRecord, InvalidStateError

from .interfaces import InFlightHandleRepositoryPort

_HANDLE_COLUMNS: Final[str] = "handle_id, job_id, claimed_by, claimed_at_utc, created_at_utc"


class SQLAlchemyInFlightHandleService(InFlightHandleRepositoryPort):
    """SQLAlchemy-backed handle tracker.

    Reconciliation passes claim handles by stamping `claimed_by` on rows picked
    with `FOR UPDATE SKIP LOCKED`, so concurrent passes work on disjoint sets.
    """

    def __init__(self, engine: Engine):
        """Initialize handle tracker.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_handle_record(self, handle_id: str, job_id: int) -> InFlightHandleRecord:
        """Insert one live handle.

        Args:
            handle_id: Transport handle.
            job_id: Owning job.

        Returns:
            InFlightHandleRecord: Inserted row.

        Raises:
            InvalidStateError: Raised when the job already has a live handle.
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                row = connection.execute(
                    text(
                        "INSERT INTO in_flight_handle (handle_id, job_id) VALUES (:handle_id, :job_id) "
                        f"RETURNING {_HANDLE_COLUMNS}"
                    ),
                    {"handle_id": handle_id, "job_id": job_id},
                ).mappings().one()
                return self._map_handle_record(row)
        except IntegrityError as error:
            raise InvalidStateError(f"job {job_id} already has a live handle", job_id=job_id) from error
        except SQLAlchemyError as error:
            raise RuntimeError("failed to record in-flight handle") from error

    def db_handle_claim_batch(self, owner: str, limit: int, claim_timeout_seconds: float) -> list[InFlightHandleRecord]:
        """Claim a batch of handles for one reconciliation pass.

        Args:
            owner: Pass identity stamped on claimed rows.
            limit: Maximum number of handles.
            claim_timeout_seconds: Age after which another owner's claim is considered abandoned.

        Returns:
            list[InFlightHandleRecord]: Claimed handles, oldest first.

        Raises:
            ValueError: Raised when inputs are invalid.
            RuntimeError: Raised when persistence fails.
        """

        if not owner.strip():
            raise ValueError("owner must not be blank")
        if limit < 1:
            raise ValueError("limit must be >= 1")

        try:
            with self._engine.begin() as connection:
                rows = connection.execute(
                    text(
                        "UPDATE in_flight_handle SET claimed_by = :owner, claimed_at_utc = now() "
                        "WHERE handle_id IN ("
                        "SELECT handle_id FROM in_flight_handle "
                        "WHERE claimed_by IS NULL "
                        "OR claimed_at_utc < now() - (:claim_timeout_seconds * interval '1 second') "
                        "ORDER BY created_at_utc, handle_id "
                        "LIMIT :limit FOR UPDATE SKIP LOCKED"
                        ") "
                        f"RETURNING {_HANDLE_COLUMNS}"
                    ),
                    {"owner": owner, "limit": limit, "claim_timeout_seconds": claim_timeout_seconds},
                ).mappings().all()
                records = [self._map_handle_record(row) for row in rows]
                return sorted(records, key=lambda record: (record.created_at_utc, record.handle_id))
        except SQLAlchemyError as error:
            raise RuntimeError("failed to claim in-flight handles") from error

    def db_handle_release_claims(self, owner: str) -> int:
        """Release every claim held by one pass."""

        try:
            with self._engine.begin() as connection:
                result = connection.execute(
                    text(
                        "UPDATE in_flight_handle SET claimed_by = NULL, claimed_at_utc = NULL "
                        "WHERE claimed_by = :owner"
                    ),
                    {"owner": owner},
                )
                return int(result.rowcount or 0)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to release in-flight handle claims") from error

    def db_handle_delete(self, handle_id: str, owner: str | None = None) -> bool:
        """Delete one handle, optionally only when `owner` still holds its claim."""

        if owner is None:
            statement = text("DELETE FROM in_flight_handle WHERE handle_id = :handle_id")
            parameters: dict[str, Any] = {"handle_id": handle_id}
        else:
            statement = text("DELETE FROM in_flight_handle WHERE handle_id = :handle_id AND claimed_by = :owner")
            parameters = {"handle_id": handle_id, "owner": owner}

        try:
            with self._engine.begin() as connection:
                result = connection.execute(statement, parameters)
                return int(result.rowcount or 0) > 0
        except SQLAlchemyError as error:
            raise RuntimeError("failed to delete in-flight handle") from error

    def db_handle_get_for_job(self, job_id: int) -> InFlightHandleRecord | None:
        """Return the live handle for one job."""

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text(f"SELECT {_HANDLE_COLUMNS} FROM in_flight_handle WHERE job_id = :job_id"),
                    {"job_id": job_id},
                ).mappings().first()
                if row is None:
                    return None
                return self._map_handle_record(row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to fetch in-flight handle") from error

    def db_handle_count(self) -> int:
        """Return the number of live handles."""

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text("SELECT COUNT(*) AS handle_count FROM in_flight_handle")
                ).mappings().one()
                return int(row["handle_count"])
        except SQLAlchemyError as error:
            raise RuntimeError("failed to count in-flight handles") from error

    def _map_handle_record(self, row: Any) -> InFlightHandleRecord:
        return InFlightHandleRecord(
            handle_id=row["handle_id"],
            job_id=int(row["job_id"]),
            claimed_by=row["claimed_by"],
            claimed_at_utc=row["claimed_at_utc"],
            created_at_utc=row["created_at_utc"],
        )
