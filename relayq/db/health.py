"""Database health service implementations for connectivity and schema checks."""

from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from relayq.domain import HealthStatus

from .interfaces import DatabaseHealthPort


class SQLAlchemyDatabaseHealthService(DatabaseHealthPort):
    """Database health service backed by SQLAlchemy engine checks."""

    def __init__(self, engine: Engine):
        """Initialize database health service.

        Args:
            engine: SQLAlchemy engine used for connectivity checks.

        Raises:
            ValueError: Raised when engine is None.
        """

        if engine is None:
            raise ValueError("engine must not be None")
        self._engine = engine

    def db_connection_label(self) -> str:
        """Return the target database URL with the password hidden."""

        return self._engine.url.render_as_string(hide_password=True)

    def db_check_health(self) -> HealthStatus:
        """Verify connectivity and that the worker slot pool has been provisioned.

        Returns:
            HealthStatus: `ok` with slot count, or `degraded` when no slots exist.

        Raises:
            ConnectionError: Raised when the database or queue schema is unreachable.
        """

        try:
            with self._engine.connect() as connection:
                slot_count = connection.execute(text("SELECT COUNT(*) FROM worker_slot")).scalar_one()
        except SQLAlchemyError as error:
            raise ConnectionError("database connectivity check failed") from error

        if int(slot_count) == 0:
            return HealthStatus(status="degraded", detail="worker slot pool is not provisioned")
        return HealthStatus(status="ok", detail=f"database reachable, {int(slot_count)} worker slots")
