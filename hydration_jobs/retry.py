"""Backoff calculation and retry of transient database errors."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import asyncpg

T = TypeVar("T")

DEFAULT_BACKOFF_POLICY = {"type": "exponential", "base_seconds": 0.5, "max_seconds": 5}

_TRANSIENT_SQLSTATES = frozenset(
    {
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
        "55P03",  # lock_not_available
        "57P01",  # admin_shutdown
        "08000",
        "08003",
        "08006",
    }
)


def calculate_backoff(backoff_policy: Dict[str, Any], attempt: int) -> float:
    """
    Calculate backoff delay based on policy and attempt number.

    Args:
        backoff_policy: Backoff policy configuration
        attempt: Current attempt number (1-indexed)

    Returns:
        Backoff delay in seconds
    """
    policy_type = backoff_policy.get("type", "exponential")
    base_seconds = backoff_policy.get("base_seconds", 10)
    max_seconds = backoff_policy.get("max_seconds", 3600)

    if policy_type == "linear":
        delay = base_seconds * attempt
    elif policy_type == "constant":
        delay = base_seconds
    else:
        # Exponential: base * 2^(attempt-1)
        delay = base_seconds * (2 ** (attempt - 1))
    return min(delay, max_seconds)


def is_transient_db_error(exc: BaseException) -> bool:
    """Whether exc is a database error worth retrying."""
    if isinstance(
        exc,
        (
            asyncpg.SerializationError,
            asyncpg.DeadlockDetectedError,
            asyncpg.ConnectionDoesNotExistError,
            asyncpg.InterfaceError,
            ConnectionError,
        ),
    ):
        return True
    sqlstate = getattr(exc, "sqlstate", None)
    return sqlstate in _TRANSIENT_SQLSTATES


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[BaseException], bool] = is_transient_db_error,
    attempts: int = 3,
    backoff_policy: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> T:
    """
    Await operation(), retrying when the raised error matches is_retryable.

    Non-matching errors and the error of the last attempt propagate.
    """
    backoff_policy = backoff_policy or DEFAULT_BACKOFF_POLICY
    logger = logger or logging.getLogger(__name__)

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= attempts or not is_retryable(e):
                raise
            delay = calculate_backoff(backoff_policy, attempt)
            logger.warning(
                f"Transient error on attempt {attempt}/{attempts}, retrying in {delay}s: {e}"
            )
            await asyncio.sleep(delay)
            attempt += 1
