"""Logging infrastructure with syslog integration and connection generation tracking.

Every record carries the generation of the gateway connection that produced
it, taken from a ContextVar. Error listener tasks and the resend
coordinator set the variable, and tasks spawned from them inherit it.
"""

import contextvars
import logging
import logging.handlers
import sys
from typing import Final, override

connection_generation_var: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "connection_generation",
    default=None,
)

DEFAULT_LOG_FORMAT: Final[str] = (
    "%(asctime)s - %(name)s - %(levelname)s - [gen %(connection_generation)s] - %(message)s"
)

SYSLOG_LOG_FORMAT: Final[str] = (
    "apns-resend[%(process)d]: %(levelname)s - [gen %(connection_generation)s] - %(name)s - %(message)s"
)

DEFAULT_SYSLOG_ADDRESS: Final[str] = "/dev/log"


class ConnectionGenerationFilter(logging.Filter):
    """Logging filter that adds the connection generation to log records."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        """Add the generation from the ContextVar, "-" when unset.

        Args:
            record: Log record to enhance

        Returns:
            True to allow the record to be logged
        """
        generation = connection_generation_var.get()
        record.connection_generation = generation if generation is not None else "-"
        return True


def configure_logging(
    *,
    log_level: str = "INFO",
    enable_syslog: bool = True,
    syslog_address: str = DEFAULT_SYSLOG_ADDRESS,
    enable_console: bool = True,
) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_syslog: Enable the syslog handler
        syslog_address: Syslog socket address
        enable_console: Enable console output handler

    Example:
        >>> configure_logging(log_level="DEBUG", enable_syslog=False)
    """
    root_logger = logging.getLogger()

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    root_logger.handlers.clear()

    generation_filter = ConnectionGenerationFilter()

    if enable_syslog:
        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON,
            )
            syslog_handler.setFormatter(logging.Formatter(SYSLOG_LOG_FORMAT))
            syslog_handler.addFilter(generation_filter)
            root_logger.addHandler(syslog_handler)

        except OSError as exc:
            # Syslog not available (e.g., development environment)
            print(
                f"Warning: Could not connect to syslog at {syslog_address}: {exc}",
                file=sys.stderr,
            )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        console_handler.addFilter(generation_filter)
        root_logger.addHandler(console_handler)


def set_connection_generation(generation: int) -> None:
    """Set the connection generation for the current context.

    Args:
        generation: Generation number of the active connection
    """
    _ = connection_generation_var.set(generation)


def get_connection_generation() -> int | None:
    """Get the connection generation of the current context."""
    return connection_generation_var.get()


def clear_connection_generation() -> None:
    """Clear the connection generation from the current context."""
    _ = connection_generation_var.set(None)
