"""Structured logging setup shared by the API and worker entrypoints."""

import logging
import sys

import structlog


def config_setup_logging(log_level: str = "INFO", log_json: bool = True) -> None:
    """Configure stdlib logging and structlog processors.

    Args:
        log_level: Log level name such as `INFO`.
        log_json: Render JSON lines when True, console output otherwise.

    Returns:
        None: Logging is configured as a side effect.

    Raises:
        ValueError: Raised when the log level name is unknown.
    """

    level_value = logging.getLevelName(log_level.upper())
    if not isinstance(level_value, int):
        raise ValueError(f"unknown log level: {log_level}")

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_value)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if log_json else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )
