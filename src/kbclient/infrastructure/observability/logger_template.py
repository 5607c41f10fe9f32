"""Shared logger utilities.

USAGE:
    from kbclient.infrastructure.observability.logger_template import (
        get_module_logger,
        log_operation,
    )

    logger = get_module_logger(__name__)

    async with log_operation(logger, "session_refresh", user_id=42):
        await auth_api.refresh(...)
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any


def get_module_logger(name: str) -> logging.Logger:
    """Get logger for module with standard config.

    Args:
        name: Module name (use __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


# Yo, this context manager logs start/end with automatic duration tracking. The **context
# args become extra fields in every line. On exception it logs the failure with the traceback
# and RE-RAISES - it never swallows. NEVER pass tokens as context, they end up in the logs.
@asynccontextmanager
async def log_operation(
    logger: logging.Logger,
    operation: str,
    **context: Any,
) -> AsyncIterator[None]:
    """Context manager for logging operation start/end with automatic timing.

    Logs:
    - {operation}.started with context fields
    - {operation}.completed with context + duration_ms
    - {operation}.failed with context + duration_ms + error details (if exception)

    Args:
        logger: Logger instance from get_module_logger()
        operation: Operation name (e.g., "session_refresh", "sign_in")
        **context: Additional fields to include in logs (e.g., user_id=42)
    """
    start = time.monotonic()
    logger.info(f"{operation}.started", extra=context)

    try:
        yield
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(
            f"{operation}.failed",
            extra={
                **context,
                "duration_ms": duration_ms,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        raise

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        f"{operation}.completed",
        extra={**context, "duration_ms": duration_ms},
    )
