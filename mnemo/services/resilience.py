"""Bounded retry with exponential backoff for calls to flaky backends.

A single ``resilient_call`` wrapper replaces per-operation retry loops.  The
caller supplies a *classifier* that sorts each exception into one of three
buckets:

* ``RETRY``: transient; try again after a backoff, up to ``max_attempts``.
* ``SKIP`` : the backend is not there at all; give up immediately and return
  the fallback value.
* ``FATAL``: re-raise to the caller untouched.

When every attempt fails with ``RETRY`` errors the fallback is returned, so a
degraded backend can delay a turn by at most the sum of the backoffs.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF_SECONDS = 0.5


class ErrorAction(enum.Enum):
    RETRY = "retry"
    SKIP = "skip"
    FATAL = "fatal"


def exponential_backoff(initial: float = DEFAULT_INITIAL_BACKOFF_SECONDS) -> Callable[[int], float]:
    """Return ``attempt -> delay``: ``initial``, ``2*initial``, ``4*initial``…"""

    def _delay(attempt: int) -> float:
        return initial * (2 ** (attempt - 1))

    return _delay


# Phrases that show up in driver error messages when nothing is listening or
# the name does not resolve.  Node-style codes are included because mem0's
# networked stores surface them verbatim.
_UNREACHABLE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "enotfound",
    "client is closed",
    "connection is closed",
    "cannot send a request, as the client has been closed",
)
_TRANSIENT_MARKERS = (
    "econnrefused",
    "connection refused",
    "econnreset",
    "connection reset",
    "etimedout",
    "timed out",
    "temporarily unavailable",
)


def classify_backend_error(exc: BaseException) -> ErrorAction:
    """Classify an exception raised by a storage/vector backend.

    Nothing is ``FATAL`` here: a memory backend is never allowed to fail a
    turn.  DNS failures and closed clients are ``SKIP``; refused or reset
    connections and timeouts are ``RETRY``; anything unrecognised is retried
    too, since the attempt budget is capped.
    """
    if isinstance(exc, socket.gaierror):
        return ErrorAction.SKIP
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, TimeoutError)):
        return ErrorAction.RETRY
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError)):
        message = str(exc).lower()
        if any(marker in message for marker in _UNREACHABLE_MARKERS):
            return ErrorAction.SKIP
        return ErrorAction.RETRY

    message = str(exc).lower()
    if any(marker in message for marker in _UNREACHABLE_MARKERS):
        return ErrorAction.SKIP
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorAction.RETRY
    return ErrorAction.RETRY


async def resilient_call(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    fallback: T,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    backoff: Callable[[int], float] | None = None,
    classify: Callable[[BaseException], ErrorAction] = classify_backend_error,
    on_degraded: Callable[[str, BaseException], None] | None = None,
) -> T:
    """Await ``operation()`` with bounded retries.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        name: Label used in log lines (e.g. ``"memory.search"``).
        fallback: Returned when the backend is skipped or retries run out.
        max_attempts: Total attempts, including the first one.
        backoff: ``attempt -> seconds`` to sleep after a failed attempt.
        classify: Maps an exception to an ``ErrorAction``.
        on_degraded: Called with ``(name, last_error)`` whenever the fallback
            is returned.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    delay_for = backoff or exponential_backoff()

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            action = classify(exc)
            if action is ErrorAction.FATAL:
                raise
            if action is ErrorAction.SKIP:
                logger.warning(
                    "%s: backend unreachable (%s), continuing without it",
                    name, type(exc).__name__,
                )
                if on_degraded:
                    on_degraded(name, exc)
                return fallback

            if attempt == max_attempts:
                logger.warning(
                    "%s failed after %d attempts (%s: %s), continuing without it",
                    name, max_attempts, type(exc).__name__, exc,
                )
                if on_degraded:
                    on_degraded(name, exc)
                return fallback

            delay = delay_for(attempt)
            logger.warning(
                "%s attempt %d/%d failed (%s). Retrying in %.1fs…",
                name, attempt, max_attempts, type(exc).__name__, delay,
            )
            await asyncio.sleep(delay)

    return fallback
