"""
Logger factory and utility functions.

Provides:
- get_logger(): Get a configured logger instance
- should_sample(): Determine if an event should be logged based on sampling rate
- log_with_context(): Bind common context to a logger
"""

import random

import structlog
from structlog.stdlib import BoundLogger

from shared.logging_config import SAMPLING_RATES, setup_logging


def get_logger(name: str) -> BoundLogger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog BoundLogger instance

    Example:
        >>> from shared.logging import get_logger
        >>> log = get_logger(__name__)
        >>> log.info("api_key_created", key_id="123", key_prefix="AbCdEfGh")
    """
    return structlog.get_logger(name)


def should_sample(event_type: str) -> bool:
    """
    Determine if an event should be logged based on sampling rate.

    Uses random sampling to reduce log volume for high-frequency events
    (per-request credential validation, sweep ticks).

    Args:
        event_type: Type of event (e.g., "api_key_validated")

    Returns:
        True if the event should be logged, False otherwise
    """
    # Get sampling rate for this event type (default to 100% if not configured)
    sample_rate = SAMPLING_RATES.get(event_type, 1.0)

    if sample_rate >= 1.0:
        return True
    if sample_rate <= 0.0:
        return False

    return random.random() < sample_rate


def log_with_context(logger: BoundLogger, **context) -> BoundLogger:
    """
    Bind context to a logger for all subsequent log calls.

    Example:
        >>> log = log_with_context(get_logger(__name__), webhook_id="abc")
        >>> log.info("webhook_attempt_started")  # includes webhook_id
    """
    return logger.bind(**context)


__all__ = [
    "get_logger",
    "log_with_context",
    "should_sample",
    "SAMPLING_RATES",
    "setup_logging",
]
