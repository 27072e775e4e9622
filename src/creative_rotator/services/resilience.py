"""Bounded retry of marketplace calls on rate limiting."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from creative_rotator.config import settings
from creative_rotator.domain.errors import ExternalServiceError, RateLimitedError
from creative_rotator.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUS = 429


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header; HTTP-date values are ignored."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def is_rate_limited(exc: BaseException) -> bool:
    return (
        isinstance(exc, httpx.HTTPStatusError)
        and exc.response.status_code == RATE_LIMIT_STATUS
    )


class WaitRetryAfter:
    """Tenacity wait honouring ``Retry-After``, else exponential backoff.

    Both delays are capped at ``max_delay``.
    """

    def __init__(self, base_delay: float, max_delay: float) -> None:
        self.max_delay = max_delay
        self.fallback = wait_exponential(multiplier=base_delay, max=max_delay)

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, httpx.HTTPStatusError):
            retry_after = parse_retry_after(exc.response.headers.get("retry-after"))
            if retry_after is not None:
                return min(retry_after, self.max_delay)
        return self.fallback(retry_state)


class ResilientCaller:
    """Runs an outbound call, retrying only when the provider answers 429.

    - Delay before retry N (0-based) is ``Retry-After`` when the provider
      sends it, otherwise ``base_delay * 2**N``; both capped at ``max_delay``.
    - ``max_attempts`` counts every call, including the first.
    - Other HTTP errors and transport failures raise ExternalServiceError
      at once.
    - Running out of attempts raises RateLimitedError.
    """

    def __init__(
        self,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        max_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.retry_max_attempts
        )
        self.base_delay = (
            base_delay if base_delay is not None else settings.retry_backoff_base_seconds
        )
        self.max_delay = max_delay if max_delay is not None else settings.retry_max_delay_seconds
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._sleep = sleep
        self.wait = WaitRetryAfter(self.base_delay, self.max_delay)

    def _retrying(self, operation: str) -> AsyncRetrying:
        def log_retry(retry_state: RetryCallState) -> None:
            logger.info(
                "rate_limited_retrying",
                operation=operation,
                attempt=retry_state.attempt_number,
                delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
            )

        return AsyncRetrying(
            retry=retry_if_exception(is_rate_limited),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )

    async def call(self, fn: Callable[[], Awaitable[T]], operation: str = "call") -> T:
        """Await ``fn()`` with rate-limit retries.

        Args:
            fn: Zero-argument factory returning a fresh awaitable per attempt.
            operation: Name used in log events.

        Raises:
            RateLimitedError: Every attempt was rate limited.
            ExternalServiceError: Any other provider or transport failure.
        """
        try:
            return await self._retrying(operation)(fn)
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == RATE_LIMIT_STATUS:
                logger.warning(
                    "rate_limit_retries_exhausted",
                    operation=operation,
                    attempts=self.max_attempts,
                )
                raise RateLimitedError(
                    f"{operation} still rate limited after {self.max_attempts} attempts",
                    attempts=self.max_attempts,
                ) from e
            raise ExternalServiceError(
                f"{operation} failed with HTTP {status_code}",
                status_code=status_code,
            ) from e
        except httpx.RequestError as e:
            raise ExternalServiceError(f"{operation} failed: {type(e).__name__}: {e}") from e
