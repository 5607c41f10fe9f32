"""Logging, correlation ids and user-facing error messages."""

from kbclient.infrastructure.observability.error_formatting import get_friendly_api_error
from kbclient.infrastructure.observability.logger_template import (
    get_module_logger,
    log_operation,
)
from kbclient.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "get_friendly_api_error",
    "get_module_logger",
    "log_operation",
    "set_correlation_id",
]
