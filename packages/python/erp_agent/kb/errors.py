"""
Error classification for embedding and vector search calls.
"""

import logging

logger = logging.getLogger(__name__)


def is_retryable_embedding_error(exception: Exception) -> bool:
    """
    Check if an embedding API error is retryable.

    Args:
        exception: The exception to check

    Returns:
        bool: True if the exception is retryable, False otherwise
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()

    retryable_patterns = [
        "503",
        "429",  # Rate limit
        "rate limit",
        "rate_limit",
        "too many requests",
        "timeout",
        "connection error",
        "internal server error",
        "service unavailable",
        "temporarily unavailable",
        "overloaded",
        "502",
        "504",
    ]

    return any(pattern in error_message for pattern in retryable_patterns)


def is_permanent_embedding_error(exception: Exception) -> bool:
    """
    Check if an embedding API error is permanent (bad key, bad model, bad input).
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()

    permanent_patterns = [
        "401",
        "403",
        "invalid api key",
        "authentication failed",
        "invalid model",
        "model not found",
        "unsupported model",
        "400",
    ]

    return any(pattern in error_message for pattern in permanent_patterns)


def is_retryable_vector_index_error(exception: Exception) -> bool:
    """
    A vector index that is still building or syncing reports errors that clear up
    on their own; retry those.
    """
    if not isinstance(exception, Exception):
        return False

    error_message = str(exception).lower()
    return any(
        pattern in error_message
        for pattern in (
            "index not found",
            "not initialized",
            "index is not ready",
            "initial sync",
            "cursor not found",
            "timeout",
            "connection",
        )
    )
