"""
Retry policy applied at the record-store and state-store boundaries.

Every call into a backing store goes through one RetryPolicy so attempts,
backoff and the overall time budget are uniform across the engine. The
policy is built on tenacity's AsyncRetrying:

- stop after `max_attempts` or once `timeout_seconds` have elapsed
- exponential backoff starting at `base_delay_seconds`, capped at `max_delay_seconds`
- only transient errors are retried; everything else propagates immediately
- exhaustion raises DependencyUnavailable chained to the last error

Usage:
    policy = RetryPolicy.from_settings(settings)
    rows = await policy.run('ledger.query', store.query, record_filter)
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

import asyncpg
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
)

from campaign_engine.core.config import Settings
from campaign_engine.core.errors import DependencyUnavailable

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt/backoff/timeout policy for one class of store calls.

    Attributes:
        max_attempts: Total attempts including the first one.
        base_delay_seconds: Delay before the second attempt.
        max_delay_seconds: Cap on any single backoff delay.
        timeout_seconds: Overall budget across all attempts.
        retry_on: Exception types considered transient.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.2
    max_delay_seconds: float = 2.0
    timeout_seconds: float = 10.0
    retry_on: Tuple[Type[BaseException], ...] = field(default=TRANSIENT_ERRORS)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be non-negative")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

    @classmethod
    def from_settings(cls, settings: Settings) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay_seconds=settings.retry_base_delay_seconds,
            max_delay_seconds=settings.retry_max_delay_seconds,
            timeout_seconds=settings.retry_timeout_seconds,
        )

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts) | stop_after_delay(self.timeout_seconds),
            wait=wait_exponential(
                multiplier=self.base_delay_seconds,
                min=self.base_delay_seconds,
                max=self.max_delay_seconds,
            ),
            retry=retry_if_exception_type(self.retry_on),
            reraise=False,
        )

    async def run(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute `func(*args, **kwargs)` under this policy.

        Args:
            operation: Label used in logs and in the DependencyUnavailable message.
            func: Coroutine function performing the store call.

        Returns:
            Whatever `func` returns.

        Raises:
            DependencyUnavailable: All attempts failed with transient errors, or
                the overall timeout elapsed.
            Exception: Any non-transient error raised by `func`, unchanged.
        """
        try:
            return await asyncio.wait_for(
                self._attempt(operation, func, *args, **kwargs),
                timeout=self.timeout_seconds,
            )
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.warning(
                f"{operation} failed after {e.last_attempt.attempt_number} attempts: {last_error}"
            )
            raise DependencyUnavailable(operation, last_error) from last_error
        except asyncio.TimeoutError as e:
            logger.warning(f"{operation} exceeded overall timeout of {self.timeout_seconds}s")
            raise DependencyUnavailable(operation, e) from e

    async def _attempt(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        async for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.debug(f"Retrying {operation} (attempt {attempt.retry_state.attempt_number})")
                return await func(*args, **kwargs)
        # AsyncRetrying either returns from the block or raises RetryError
        raise RuntimeError(f"{operation}: retry loop exited without a result")
