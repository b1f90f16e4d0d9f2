"""Service layer logging utilities.

Provides structured logging functions for service operations, so every
allocation, closure and depletion is logged with the same format and
context fields.

Usage:
    from src.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="create_lot",
        outcome="success",
        lot_id=12,
        quantity="800.000",
    )

    log_operation(
        logger,
        operation="create_lot",
        outcome="over_allocated",
        level=logging.WARNING,
        batch_id=3,
        requested="100.000",
        remaining="0.000",
    )
"""

import logging
from typing import Any, Optional

import colorlog

ROOT_LOGGER_NAME = "coop_trace"


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger under the 'coop_trace.services' prefix.

    Example:
        >>> logger = get_service_logger(__name__)
        >>> logger.name
        'coop_trace.services.lot_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The message is "<operation>: <outcome>"; context fields are attached
    to the record via ``extra`` for structured handlers.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g. "create_lot", "deplete")
        outcome: Outcome description (e.g. "success", "over_allocated")
        level: Log level (default: INFO)
        **context: Additional context fields (ids, quantities, error kinds)
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Install a coloured console handler on the ``coop_trace`` logger.

    Called once by the CLI and the HTTP server; idempotent.

    Args:
        level: Level name; defaults to the configured COOP_TRACE_LOG_LEVEL

    Returns:
        The root ``coop_trace`` logger
    """
    if level is None:
        from src.utils.config import get_config

        level = get_config().log_level

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if not any(getattr(h, "_coop_trace_console", False) for h in root.handlers):
        handler = colorlog.StreamHandler()
        handler.setFormatter(
            colorlog.ColoredFormatter(
                "%(log_color)s[%(asctime)s] %(levelname)-8s%(reset)s %(blue)s%(name)s%(reset)s %(message)s",
                datefmt="%H:%M:%S",
                reset=True,
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        )
        handler._coop_trace_console = True
        root.addHandler(handler)

    return root
