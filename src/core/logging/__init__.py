"""
Structured logging module.

Provides JSON logging with context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.message_context import (
    MessageLogContext,
    get_message_context,
)
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import (
    get_log_file_path,
    log_worker_startup,
    setup_logging,
)
from core.logging.utilities import (
    format_cycle_output,
    log_exception,
    log_startup_banner,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_log_file_path",
    "log_worker_startup",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Message Context
    "get_message_context",
    "MessageLogContext",
    # Periodic stats
    "PeriodicStatsLogger",
    # Utilities
    "log_with_context",
    "log_exception",
    "format_cycle_output",
    "log_startup_banner",
]
