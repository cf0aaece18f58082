"""
Tests for retry/backoff utilities and keyed locks.
"""
from __future__ import annotations

import asyncio

import pytest

from crosschain.core.locks import KeyedLock
from crosschain.core.retry import BackoffTracker, RetryConfig, RetryStrategy, retry


class TestRetryConfig:
    """Delay calculation per strategy."""

    def test_exponential_is_capped(self):
        config = RetryConfig(initial_delay=1, max_delay=5, jitter=False)
        assert [config.calculate_delay(n) for n in range(4)] == [1, 2, 4, 5]

    def test_linear_and_fixed(self):
        linear = RetryConfig(initial_delay=2, strategy=RetryStrategy.LINEAR, jitter=False)
        fixed = RetryConfig(initial_delay=2, strategy=RetryStrategy.FIXED, jitter=False)
        assert linear.calculate_delay(2) == 6
        assert fixed.calculate_delay(2) == 2


class TestRetryDecorator:
    """Test suite for the async retry decorator."""

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        calls = []

        @retry(max_attempts=3, initial_delay=0, jitter=False, retryable_exceptions=(ConnectionError,))
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset by peer")
            return "ok"

        assert await flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        @retry(max_attempts=2, initial_delay=0, jitter=False, retryable_exceptions=(ConnectionError,))
        async def down():
            calls.append(1)
            raise ConnectionError("refused")

        with pytest.raises(ConnectionError):
            await down()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_other_errors(self):
        calls = []

        @retry(max_attempts=3, initial_delay=0, retryable_exceptions=(ConnectionError,))
        async def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await broken()
        assert len(calls) == 1


class TestBackoffTracker:
    """Test suite for per-key backoff."""

    @pytest.fixture
    def clock(self):
        now = [0.0]
        return now

    @pytest.fixture
    def tracker(self, clock):
        config = RetryConfig(max_attempts=3, initial_delay=10, max_delay=100, jitter=False)
        return BackoffTracker(config, clock=lambda: clock[0])

    def test_fresh_key_can_attempt(self, tracker):
        assert tracker.can_attempt("a") is True
        assert tracker.attempts("a") == 0

    def test_failure_defers_next_attempt(self, tracker, clock):
        tracker.record_failure("a", "boom")
        assert tracker.can_attempt("a") is False

        clock[0] = 10
        assert tracker.can_attempt("a") is True

        tracker.record_failure("a", "boom")
        clock[0] = 29
        assert tracker.can_attempt("a") is False
        clock[0] = 30
        assert tracker.can_attempt("a") is True

    def test_exhaustion_and_reset(self, tracker, clock):
        for _ in range(3):
            tracker.record_failure("a", "boom")
        clock[0] = 1000

        assert tracker.is_exhausted("a") is True
        assert tracker.can_attempt("a") is False
        assert tracker.snapshot()["a"] == {"attempts": 3, "exhausted": True, "last_error": "boom"}

        tracker.reset("a")
        assert tracker.can_attempt("a") is True
        assert tracker.is_exhausted("a") is False

    def test_success_clears_state(self, tracker):
        tracker.record_failure("a", "boom")
        tracker.record_success("a")
        assert tracker.attempts("a") == 0
        assert tracker.can_attempt("a") is True

    def test_keys_are_independent(self, tracker):
        tracker.record_failure("a", "boom")
        assert tracker.can_attempt("b") is True


class TestKeyedLock:
    """Test suite for KeyedLock."""

    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLock()
        order = []

        async def work(name):
            async with locks.acquire("token-1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(work("a"), work("b"))

        assert order == ["a-start", "a-end", "b-start", "b-end"]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()

        async with locks.acquire("token-1"):
            assert locks.is_locked("token-1") is True
            assert locks.is_locked("token-2") is False
            async with locks.acquire("token-2"):
                assert locks.is_locked("token-2") is True

        assert locks.is_locked("token-1") is False
