"""
Retry and backoff utilities for the synchronization engine.

Provides a retry decorator for transient chain-read failures and a
per-key backoff tracker that throttles rebalance and graduation attempts
across scheduler ticks.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryStrategy(str, Enum):
    """Retry strategy types."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff
        jitter: Add random jitter to delays
        strategy: Retry strategy to use
        retryable_exceptions: Tuple of exceptions to retry on
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
        retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.strategy = strategy
        self.retryable_exceptions = retryable_exceptions

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for given attempt number.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in seconds
        """
        if self.strategy == RetryStrategy.FIXED:
            delay = self.initial_delay
        elif self.strategy == RetryStrategy.LINEAR:
            delay = self.initial_delay * (attempt + 1)
        else:  # EXPONENTIAL
            delay = self.initial_delay * (self.exponential_base ** attempt)

        delay = min(delay, self.max_delay)

        if self.jitter:
            delay = delay * (0.5 + random.random())

        return delay


def retry(
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,)
) -> Callable:
    """
    Decorator for adding retry logic to async functions.

    Args:
        max_attempts: Maximum retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Whether to add jitter
        strategy: Retry strategy
        retryable_exceptions: Exceptions to retry on

    Returns:
        Decorated function with retry logic
    """
    config = RetryConfig(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        strategy=strategy,
        retryable_exceptions=retryable_exceptions
    )

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> Any:
            for attempt in range(config.max_attempts):
                try:
                    return await func(*args, **kwargs)

                except config.retryable_exceptions as e:
                    if attempt >= config.max_attempts - 1:
                        logger.error(
                            f"Max retries ({config.max_attempts}) exceeded for {func.__name__}. "
                            f"Last error: {e}"
                        )
                        raise

                    delay = config.calculate_delay(attempt)
                    logger.warning(
                        f"Retry {attempt + 1}/{config.max_attempts} for {func.__name__} "
                        f"after {delay:.2f}s delay. Error: {e}"
                    )
                    await asyncio.sleep(delay)

        return async_wrapper

    return decorator


# Transient RPC read failures only; writes are never blindly replayed
rpc_retry = functools.partial(
    retry,
    max_attempts=3,
    initial_delay=0.5,
    max_delay=5.0,
    strategy=RetryStrategy.EXPONENTIAL,
    retryable_exceptions=(ConnectionError, asyncio.TimeoutError, TimeoutError)
)


@dataclass
class AttemptState:
    """Attempt bookkeeping for one tracked key."""
    attempts: int = 0
    next_attempt_at: float = 0.0
    last_error: Optional[str] = None


class BackoffTracker:
    """
    Per-key exponential backoff with a maximum-attempts limit.

    Scheduler ticks ask `can_attempt` before retrying a failed operation;
    failures push the next eligible time out, and after `max_attempts`
    failures the key is exhausted until `reset` is called.
    """

    def __init__(
        self,
        config: RetryConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._clock = clock
        self._states: Dict[str, AttemptState] = {}

    def can_attempt(self, key: str) -> bool:
        state = self._states.get(key)
        if state is None:
            return True
        if state.attempts >= self.config.max_attempts:
            return False
        return self._clock() >= state.next_attempt_at

    def record_failure(self, key: str, error: str) -> AttemptState:
        state = self._states.setdefault(key, AttemptState())
        state.attempts += 1
        state.last_error = error
        state.next_attempt_at = self._clock() + self.config.calculate_delay(state.attempts - 1)

        logger.warning(
            f"Attempt {state.attempts}/{self.config.max_attempts} failed for {key}: {error}"
        )
        return state

    def record_success(self, key: str) -> None:
        self._states.pop(key, None)

    def is_exhausted(self, key: str) -> bool:
        state = self._states.get(key)
        return state is not None and state.attempts >= self.config.max_attempts

    def attempts(self, key: str) -> int:
        state = self._states.get(key)
        return state.attempts if state else 0

    def reset(self, key: str) -> None:
        """Manually clear a key so it is retried on the next tick."""
        self._states.pop(key, None)
        logger.info(f"Backoff state reset for {key}")

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            key: {
                "attempts": state.attempts,
                "exhausted": state.attempts >= self.config.max_attempts,
                "last_error": state.last_error,
            }
            for key, state in self._states.items()
        }


__all__ = [
    "retry",
    "RetryStrategy",
    "RetryConfig",
    "rpc_retry",
    "AttemptState",
    "BackoffTracker",
]
