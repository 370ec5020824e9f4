# src/life_manager/sync/retry.py

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import ErrorKind, PermanentSyncError, classify_error, describe_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff: delay = min(base * 2**attempt, cap)."""

    retries: int = 5
    base_delay: float = 1.0
    max_delay: float = 60.0

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, base_delay=self.base_delay, max_delay=self.max_delay)

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            retries=int(getattr(settings, "retry_max_retries", 5)),
            base_delay=float(getattr(settings, "retry_base_delay_seconds", 1.0)),
            max_delay=float(getattr(settings, "retry_max_delay_seconds", 60.0)),
        )


def backoff_delay(attempt: int, *, base_delay: float = 1.0, max_delay: float = 60.0) -> float:
    attempt = max(0, int(attempt))
    # Cap the exponent before multiplying so huge attempt counts cannot overflow.
    exp = min(attempt, 62)
    return float(min(base_delay * (2**exp), max_delay))


def _rate_limit_delay(exc: BaseException, policy: RetryPolicy) -> float | None:
    raw = getattr(exc, "retry_after", None)
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if value < 0:
        return None
    return min(value, policy.max_delay)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    context: str,
    policy: RetryPolicy | None = None,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> T:
    """
    Execute one remote operation with bounded retries.

    - FATAL errors raise PermanentSyncError immediately (original error as __cause__).
    - Everything else is retried up to policy.retries times; the last error is then
      re-raised unchanged so the caller can decide whether to queue it.
    - A RATE_LIMITED error carrying `retry_after` waits that long (capped) instead of
      the computed delay.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return await operation()
        except PermanentSyncError:
            raise
        except Exception as exc:
            kind = classify_error(exc)
            if kind is ErrorKind.FATAL:
                logger.warning("%s failed permanently: %s", context, describe_error(exc))
                raise PermanentSyncError(f"{context}: {describe_error(exc)}") from exc

            if attempt >= policy.retries:
                logger.warning(
                    "%s failed after %s retries (%s): %s",
                    context,
                    attempt,
                    kind.value,
                    describe_error(exc),
                )
                raise

            delay = policy.delay_for(attempt)
            if kind is ErrorKind.RATE_LIMITED:
                hinted = _rate_limit_delay(exc, policy)
                if hinted is not None:
                    delay = hinted

            logger.warning(
                "%s attempt %s/%s failed (%s): %s; retrying in %.2fs",
                context,
                attempt + 1,
                policy.retries + 1,
                kind.value,
                describe_error(exc),
                delay,
            )
            attempt += 1
            await sleep(delay)
