"""Database service for the fixed worker slot pool used as a lease semaphore."""

from __future__ import annotations

from typing import Any, Final

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from relayq.domain import WorkerSlotRecord

from .interfaces import WorkerSlotRepositoryPort

_SLOT_COLUMNS: Final[str] = "slot_id, leased, leased_by, leased_at_utc"


class SQLAlchemyWorkerSlotService(WorkerSlotRepositoryPort):
    """SQLAlchemy-backed worker slot pool."""

    def __init__(self, engine: Engine):
        """Initialize worker slot service.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_worker_slot_provision(self, pool_size: int) -> list[WorkerSlotRecord]:
        """Ensure slots 1..pool_size exist and drop free slots above the pool size.

        Args:
            pool_size: Target pool size.

        Returns:
            list[WorkerSlotRecord]: Slots after provisioning.

        Raises:
            ValueError: Raised when pool size is below one.
            RuntimeError: Raised when persistence fails.
        """

        if pool_size < 1:
            raise ValueError("pool_size must be >= 1")

        try:
            with self._engine.begin() as connection:
                connection.execute(
                    text(
                        "INSERT INTO worker_slot (slot_id, leased) "
                        "SELECT slot_number, false FROM generate_series(1, :pool_size) AS slot_number "
                        "ON CONFLICT (slot_id) DO NOTHING"
                    ),
                    {"pool_size": pool_size},
                )
                connection.execute(
                    text("DELETE FROM worker_slot WHERE slot_id > :pool_size AND NOT leased"),
                    {"pool_size": pool_size},
                )
                rows = connection.execute(
                    text(f"SELECT {_SLOT_COLUMNS} FROM worker_slot ORDER BY slot_id")
                ).mappings().all()
                return [self._map_slot_record(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError("failed to provision worker slots") from error

    def db_worker_slot_try_lease(self, owner: str) -> WorkerSlotRecord | None:
        """Lease the lowest free slot, skipping slots another selector holds.

        Args:
            owner: Lease owner label.

        Returns:
            WorkerSlotRecord | None: Leased slot, or None when the pool is exhausted.

        Raises:
            ValueError: Raised when owner is blank.
            RuntimeError: Raised when persistence fails.
        """

        if not owner.strip():
            raise ValueError("owner must not be blank")

        try:
            with self._engine.begin() as connection:
                row = connection.execute(
                    text(
                        "UPDATE worker_slot SET leased = true, leased_by = :owner, leased_at_utc = now() "
                        "WHERE slot_id = ("
                        "SELECT slot_id FROM worker_slot WHERE NOT leased "
                        "ORDER BY slot_id LIMIT 1 FOR UPDATE SKIP LOCKED"
                        ") "
                        f"RETURNING {_SLOT_COLUMNS}"
                    ),
                    {"owner": owner},
                ).mappings().first()
                if row is None:
                    return None
                return self._map_slot_record(row)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to lease worker slot") from error

    def db_worker_slot_release(self, slot_id: int, owner: str) -> bool:
        """Release one slot when `owner` still holds it."""

        try:
            with self._engine.begin() as connection:
                result = connection.execute(
                    text(
                        "UPDATE worker_slot SET leased = false, leased_by = NULL, leased_at_utc = NULL "
                        "WHERE slot_id = :slot_id AND leased_by = :owner"
                    ),
                    {"slot_id": slot_id, "owner": owner},
                )
                return int(result.rowcount or 0) > 0
        except SQLAlchemyError as error:
            raise RuntimeError("failed to release worker slot") from error

    def db_worker_slot_renew(self, slot_id: int, owner: str) -> bool:
        """Refresh the lease timestamp when `owner` still holds the slot.

        Returns:
            bool: False when the lease was force-released or taken by another owner.

        Raises:
            RuntimeError: Raised when persistence fails.
        """

        try:
            with self._engine.begin() as connection:
                result = connection.execute(
                    text(
                        "UPDATE worker_slot SET leased_at_utc = now() "
                        "WHERE slot_id = :slot_id AND leased AND leased_by = :owner"
                    ),
                    {"slot_id": slot_id, "owner": owner},
                )
                return int(result.rowcount or 0) > 0
        except SQLAlchemyError as error:
            raise RuntimeError("failed to renew worker slot lease") from error

    def db_worker_slot_release_stale(self, older_than_seconds: float) -> list[int]:
        """Force-release leases held longer than the cutoff."""

        if older_than_seconds <= 0:
            raise ValueError("older_than_seconds must be > 0")

        try:
            with self._engine.begin() as connection:
                rows = connection.execute(
                    text(
                        "UPDATE worker_slot SET leased = false, leased_by = NULL, leased_at_utc = NULL "
                        "WHERE slot_id IN ("
                        "SELECT slot_id FROM worker_slot WHERE leased "
                        "AND leased_at_utc < now() - (:older_than_seconds * interval '1 second') "
                        "FOR UPDATE SKIP LOCKED"
                        ") "
                        "RETURNING slot_id"
                    ),
                    {"older_than_seconds": older_than_seconds},
                ).mappings().all()
                return sorted(int(row["slot_id"]) for row in rows)
        except SQLAlchemyError as error:
            raise RuntimeError("failed to release stale worker slots") from error

    def db_worker_slot_list(self) -> list[WorkerSlotRecord]:
        """List all slots ordered by id."""

        try:
            with self._engine.connect() as connection:
                rows = connection.execute(
                    text(f"SELECT {_SLOT_COLUMNS} FROM worker_slot ORDER BY slot_id")
                ).mappings().all()
                return [self._map_slot_record(row) for row in rows]
        except SQLAlchemyError as error:
            raise RuntimeError("failed to list worker slots") from error

    def _map_slot_record(self, row: Any) -> WorkerSlotRecord:
        return WorkerSlotRecord(
            slot_id=int(row["slot_id"]),
            leased=bool(row["leased"]),
            leased_by=row["leased_by"],
            leased_at_utc=row["leased_at_utc"],
        )
