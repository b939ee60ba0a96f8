"""Transient-error classification and the retry wrapper.

The control plane rejects a mutation with 409 while the pool, or its load
balancer, is locked by another in-flight operation. Those failures (and
server-side 5xx) are retried with capped exponential backoff until the
operation deadline; everything else is returned to the caller on the
first occurrence.

The wrapper does no deduplication. Operations passed to it must be safe
to invoke more than once for the same intent; the control plane's own
idempotency is relied upon.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TypeVar

from .clock import Clock, Deadline
from .errors import DeadlineExceeded, ErrorKind, RemoteError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Backoff constants (seconds)
RETRY_BACKOFF_BASE_SECONDS = 1.0
RETRY_BACKOFF_MAX_SECONDS = 10.0
RETRY_JITTER_FRACTION = 0.2

RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.CONFLICT,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.SERVER_ERROR,
    }
)


class Classification(str, Enum):
    """Outcome of classifying a remote failure."""

    RETRY = "retry"
    FATAL = "fatal"


def classify(kind: ErrorKind) -> Classification:
    """Decide whether a remote failure of the given kind is worth retrying.

    Args:
        kind: Normalized error kind.

    Returns:
        RETRY for lock conflicts and server-side failures, FATAL otherwise.
    """
    if kind in RETRYABLE_KINDS:
        return Classification.RETRY
    return Classification.FATAL


def backoff_seconds(
    attempt: int,
    base: float = RETRY_BACKOFF_BASE_SECONDS,
    maximum: float = RETRY_BACKOFF_MAX_SECONDS,
) -> float:
    """Exponential backoff with jitter for the given attempt (1-based).

    `maximum` caps the result including jitter.
    """
    backoff = base * (2 ** min(attempt - 1, 30))
    jitter = random.uniform(0, backoff * RETRY_JITTER_FRACTION)
    return min(backoff + jitter, maximum)


async def retry(
    deadline: Deadline,
    operation: Callable[[], Awaitable[T]],
    *,
    clock: Clock,
    cancel_event: asyncio.Event | None = None,
    description: str = "operation",
    backoff_base: float = RETRY_BACKOFF_BASE_SECONDS,
    backoff_max: float = RETRY_BACKOFF_MAX_SECONDS,
) -> T:
    """Invoke `operation` until it succeeds, fails fatally, or time runs out.

    Args:
        deadline: Operation deadline.
        operation: Zero-argument coroutine function performing the call.
        clock: Clock used for backoff sleeps.
        cancel_event: Optional cancellation event observed while sleeping.
        description: Human-readable name for logging.
        backoff_base: First backoff interval in seconds.
        backoff_max: Upper bound for a single backoff interval.

    Returns:
        The operation's result.

    Raises:
        RemoteError: If the operation failed with a FATAL-classified error.
        DeadlineExceeded: If retryable failures persisted past the deadline.
        OperationCancelled: If cancelled while backing off.
    """
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except RemoteError as e:
            if classify(e.kind) == Classification.FATAL:
                logger.debug(
                    f"{description} failed with non-retryable error",
                    extra={"attempt": attempt, "error_kind": e.kind.value},
                )
                raise

            if deadline.expired():
                raise DeadlineExceeded(
                    f"Timed out after {deadline.timeout_seconds}s retrying {description}: {e}",
                    last_error=e,
                ) from e

            wait_time = min(backoff_seconds(attempt, backoff_base, backoff_max), deadline.remaining())
            logger.warning(
                f"{description} failed, retrying",
                extra={
                    "attempt": attempt,
                    "wait_seconds": wait_time,
                    "error_kind": e.kind.value,
                    "error": str(e),
                },
            )
            await clock.sleep(wait_time, cancel_event)
