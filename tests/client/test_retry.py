"""Tests for retry with backoff."""

from __future__ import annotations

import httpx
import pytest

from sheetsync.client.api import APIError, AuthenticationError, QuotaExceededError
from sheetsync.client.retry import backoff_delay, is_transient, is_unsent, retry_with_backoff


class Flaky:
    """Coroutine function failing a fixed number of times."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestIsTransient:
    """Tests for is_transient()."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (QuotaExceededError("slow down", 429), True),
            (APIError("backend", 503), True),
            (APIError("bad request", 400), False),
            (AuthenticationError("expired", 401), False),
            (httpx.ReadTimeout("timeout"), True),
            (ValueError("nope"), False),
        ],
    )
    def test_classification(self, error: Exception, expected: bool) -> None:
        assert is_transient(error) is expected


class TestIsUnsent:
    """Tests for is_unsent()."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (httpx.ConnectError("refused"), True),
            (httpx.ConnectTimeout("timeout"), True),
            (QuotaExceededError("slow down", 429), True),
            (httpx.ReadTimeout("timeout"), False),
            (httpx.RemoteProtocolError("reset"), False),
            (APIError("backend", 503), False),
            (AuthenticationError("expired", 401), False),
        ],
    )
    def test_classification(self, error: Exception, expected: bool) -> None:
        assert is_unsent(error) is expected


class TestBackoffDelay:
    """Tests for backoff_delay()."""

    def test_exponential_without_jitter(self) -> None:
        assert backoff_delay(0, initial_backoff=1.0, jitter=0) == 1.0
        assert backoff_delay(2, initial_backoff=1.0, jitter=0) == 4.0

    def test_capped(self) -> None:
        assert backoff_delay(10, initial_backoff=1.0, max_backoff=10.0) == 10.0

    def test_jitter_bounded(self) -> None:
        for _ in range(20):
            delay = backoff_delay(1, initial_backoff=1.0, jitter=0.3)
            assert 2.0 <= delay <= 2.6


class TestRetryWithBackoff:
    """Tests for retry_with_backoff()."""

    @pytest.mark.asyncio
    async def test_success_after_transient_failures(self) -> None:
        func = Flaky(2, APIError("backend", 503))

        result = await retry_with_backoff(func, max_retries=3, initial_backoff=0)

        assert result == "ok"
        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self) -> None:
        func = Flaky(10, APIError("backend", 503))

        with pytest.raises(APIError):
            await retry_with_backoff(func, max_retries=2, initial_backoff=0)

        assert func.calls == 3

    @pytest.mark.asyncio
    async def test_non_transient_raised_immediately(self) -> None:
        func = Flaky(1, AuthenticationError("expired", 401))

        with pytest.raises(AuthenticationError):
            await retry_with_backoff(func, max_retries=3, initial_backoff=0)

        assert func.calls == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self) -> None:
        func = Flaky(1, ValueError("flaky parse"))

        result = await retry_with_backoff(
            func, max_retries=1, initial_backoff=0, should_retry=lambda e: isinstance(e, ValueError)
        )

        assert result == "ok"
