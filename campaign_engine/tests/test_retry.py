"""
Tests for the store-boundary RetryPolicy.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from campaign_engine.core.config import Settings
from campaign_engine.core.errors import DependencyUnavailable
from campaign_engine.core.retry import RetryPolicy


class TestRetryPolicy:

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, fast_retry: RetryPolicy) -> None:
        func = AsyncMock(side_effect=[ConnectionError("blip"), 'ok'])

        result = await fast_retry.run('store.read', func, 'arg')

        assert result == 'ok'
        assert func.await_count == 2
        func.assert_awaited_with('arg')

    @pytest.mark.asyncio
    async def test_exhaustion_raises_dependency_unavailable(self, fast_retry: RetryPolicy) -> None:
        func = AsyncMock(side_effect=ConnectionError("connection refused"))

        with pytest.raises(DependencyUnavailable) as exc_info:
            await fast_retry.run('store.read', func)

        assert exc_info.value.operation == 'store.read'
        assert isinstance(exc_info.value.cause, ConnectionError)
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_non_transient_error_propagates(self, fast_retry: RetryPolicy) -> None:
        func = AsyncMock(side_effect=ValueError("duplicate id"))

        with pytest.raises(ValueError):
            await fast_retry.run('store.append', func)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_overall_timeout(self) -> None:
        policy = RetryPolicy(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0, timeout_seconds=0.05)

        async def hang() -> None:
            await asyncio.sleep(5)

        with pytest.raises(DependencyUnavailable):
            await policy.run('store.slow', hang)

    @pytest.mark.parametrize("kwargs", [
        {'max_attempts': 0},
        {'base_delay_seconds': -1},
        {'timeout_seconds': 0},
    ])
    def test_invalid_policy(self, kwargs) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(**kwargs)

    def test_from_settings(self) -> None:
        settings = Settings(
            retry_max_attempts=5,
            retry_base_delay_seconds=0.5,
            retry_max_delay_seconds=4.0,
            retry_timeout_seconds=20.0,
        )

        policy = RetryPolicy.from_settings(settings)

        assert policy.max_attempts == 5
        assert policy.base_delay_seconds == 0.5
        assert policy.max_delay_seconds == 4.0
        assert policy.timeout_seconds == 20.0
