"""Database service storing collected outcomes of dispatched requests."""

from __future__ import annotations

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from relayq.domain import CollectResult, CollectState

from .interfaces import DispatchResponseRepositoryPort


class SQLAlchemyDispatchResponseService(DispatchResponseRepositoryPort):
    """SQLAlchemy-backed outcome store keyed by transport handle.

    Rows carry no foreign key to `in_flight_handle`: a fast response can be
    stored before the dispatcher records the handle.
    """

    def __init__(self, engine: Engine, retention_seconds: float = 6 * 3600.0):
        """Initialize outcome store.

        Args:
            engine: SQLAlchemy engine used for all persistence operations.
            retention_seconds: Age after which stored outcomes are deleted.

        Raises:
            ValueError: Raised when engine is None or retention is not positive.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")
        self._engine = engine
        self._retention_seconds = retention_seconds

    def db_response_record(
        self,
        handle_id: str,
        status_code: int | None,
        body: str | None,
        error_message: str | None,
    ) -> None:
        """Store one outcome and prune expired outcomes in the same transaction.

        Raises:
            ValueError: Raised when neither or both of status code and error are set.
            RuntimeError: Raised when persistence fails.
        """

        if (status_code is None) == (error_message is None):
            raise ValueError("exactly one of status_code and error_message must be set")

        try:
            with self._engine.begin() as connection:
                connection.execute(
                    text(
                        "INSERT INTO dispatch_response (handle_id, status_code, body, error_message) "
                        "VALUES (:handle_id, :status_code, :body, :error_message) "
                        "ON CONFLICT (handle_id) DO NOTHING"
                    ),
                    {
                        "handle_id": handle_id,
                        "status_code": status_code,
                        "body": body,
                        "error_message": error_message,
                    },
                )
                connection.execute(
                    text(
                        "DELETE FROM dispatch_response "
                        "WHERE created_at_utc < now() - (:retention_seconds * interval '1 second')"
                    ),
                    {"retention_seconds": self._retention_seconds},
                )
        except SQLAlchemyError as error:
            raise RuntimeError("failed to record dispatch response") from error

    def db_response_get(self, handle_id: str) -> CollectResult | None:
        """Return the stored outcome for one handle."""

        try:
            with self._engine.connect() as connection:
                row = connection.execute(
                    text(
                        "SELECT status_code, body, error_message FROM dispatch_response "
                        "WHERE handle_id = :handle_id"
                    ),
                    {"handle_id": handle_id},
                ).mappings().first()
        except SQLAlchemyError as error:
            raise RuntimeError("failed to fetch dispatch response") from error

        if row is None:
            return None
        if row["error_message"] is not None:
            return CollectResult(state=CollectState.ERROR, error_message=row["error_message"])
        return CollectResult(
            state=CollectState.SUCCESS,
            status_code=int(row["status_code"]),
            body=row["body"],
        )
