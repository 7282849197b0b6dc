"""
Unit Tests — RetryPolicy & run_with_retry
══════════════════════════════════════════
Coverage:
  ✅ delay_for → 2s, 4s, ... capped at max_delay
  ✅ Success on a later attempt → value returned, sleeps recorded
  ✅ Non-retryable error → raised from the first attempt, no sleep
  ✅ Exhaustion → RetryExhausted carrying attempts + last error
  ✅ from_settings reads the embedding retry fields
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from edurag.core.retry import RetryExhausted, RetryPolicy, run_with_retry


class Transient(Exception):
    pass


class Fatal(Exception):
    pass


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, Transient)


@pytest.mark.unit
@pytest.mark.embeddings
class TestRetryPolicy:

    def test_exponential_delays(self):
        policy = RetryPolicy(base_delay=2.0, multiplier=2.0, max_delay=60.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_delay_is_capped(self):
        policy = RetryPolicy(base_delay=2.0, multiplier=10.0, max_delay=15.0)
        assert policy.delay_for(3) == 15.0

    def test_from_settings(self):
        settings = SimpleNamespace(
            embedding_max_attempts=5,
            embedding_retry_base_delay=1.0,
            embedding_retry_multiplier=3.0,
            embedding_retry_max_delay=30.0,
        )
        assert RetryPolicy.from_settings(settings) == RetryPolicy(5, 1.0, 3.0, 30.0)


@pytest.mark.unit
@pytest.mark.embeddings
class TestRunWithRetry:

    async def test_returns_after_transient_failures(self):
        operation = AsyncMock(side_effect=[Transient("500"), Transient("500"), "ok"])
        sleep = AsyncMock()

        result = await run_with_retry(
            operation, RetryPolicy(), is_retryable=_is_transient, sleep=sleep,
        )

        assert result == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_non_retryable_error_is_raised_immediately(self):
        operation = AsyncMock(side_effect=Fatal("bad request"))
        sleep = AsyncMock()

        with pytest.raises(Fatal):
            await run_with_retry(operation, RetryPolicy(), is_retryable=_is_transient, sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_exhaustion_carries_last_error(self):
        last = Transient("third")
        operation = AsyncMock(side_effect=[Transient("first"), Transient("second"), last])
        sleep = AsyncMock()

        with pytest.raises(RetryExhausted) as exc_info:
            await run_with_retry(operation, RetryPolicy(max_attempts=3), is_retryable=_is_transient, sleep=sleep)

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_error is last
        assert sleep.await_count == 2

    async def test_single_attempt_policy_never_sleeps(self):
        operation = AsyncMock(side_effect=Transient("500"))
        sleep = AsyncMock()

        with pytest.raises(RetryExhausted):
            await run_with_retry(operation, RetryPolicy(max_attempts=1), is_retryable=_is_transient, sleep=sleep)

        sleep.assert_not_awaited()
