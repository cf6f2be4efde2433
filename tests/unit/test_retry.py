"""Unit tests for the retry executor.

Tests for soulcanvas/core/retry.py.

Run with:
    pytest tests/unit/test_retry.py -v
"""

import pytest

from soulcanvas.core.cancellation import CancellationToken
from soulcanvas.core.errors import APIError, CancellationError, NetworkError, is_retryable
from soulcanvas.core.retry import RetryPolicy, compute_delay, with_retry


class CountingOperation:
    """Operation that fails with scripted errors, then succeeds."""

    def __init__(self, errors=(), result="ok", always=None):
        self.errors = list(errors)
        self.result = result
        self.always = always
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.always is not None:
            raise self.always
        if self.errors:
            raise self.errors.pop(0)
        return self.result


@pytest.mark.fast
class TestComputeDelay:
    """Tests for compute_delay()."""

    @pytest.mark.parametrize("attempt,expected", [(0, 1.0), (1, 2.0), (2, 4.0)])
    def test_delay_within_jitter_bounds(self, attempt, expected):
        """Test delay stays within +/-20% of the exponential value."""
        for _ in range(50):
            delay = compute_delay(attempt, 1.0, 2.0, 30.0)
            assert expected * 0.8 <= delay <= expected * 1.2

    def test_delay_capped(self):
        assert compute_delay(10, 1.0, 2.0, 30.0) == 30.0


@pytest.mark.fast
class TestWithRetry:
    """Tests for with_retry()."""

    @pytest.mark.asyncio
    async def test_success_first_attempt(self, no_sleep):
        operation = CountingOperation()
        assert await with_retry(operation) == "ok"
        assert operation.calls == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_permanent_retryable_failure_runs_three_times(self, no_sleep):
        """Test max_retries=2 invokes a failing operation exactly 3 times."""
        error = NetworkError("503")
        operation = CountingOperation(always=error)

        with pytest.raises(NetworkError) as exc_info:
            await with_retry(operation, max_retries=2, should_retry=is_retryable)

        assert exc_info.value is error
        assert operation.calls == 3
        assert len(no_sleep.delays) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_failure_runs_once(self, no_sleep):
        """Test a non-retryable error is raised after one invocation."""
        operation = CountingOperation(always=APIError("400"))

        with pytest.raises(APIError):
            await with_retry(operation, max_retries=2, should_retry=is_retryable)

        assert operation.calls == 1
        assert no_sleep.delays == []

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self, no_sleep):
        operation = CountingOperation(errors=[NetworkError("a"), NetworkError("b")])
        assert await with_retry(operation, should_retry=is_retryable) == "ok"
        assert operation.calls == 3

    @pytest.mark.asyncio
    async def test_retries_everything_without_predicate(self, no_sleep):
        operation = CountingOperation(errors=[ValueError("flaky")])
        assert await with_retry(operation) == "ok"
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_on_retry_receives_attempt_delay_error(self, no_sleep):
        """Test on_retry is called with 1-based attempt numbers."""
        calls = []
        errors = [NetworkError("a"), NetworkError("b")]
        operation = CountingOperation(errors=list(errors))

        await with_retry(
            operation,
            base_delay=1.0,
            on_retry=lambda attempt, delay, error: calls.append((attempt, delay, error)),
        )

        assert [call[0] for call in calls] == [1, 2]
        assert [call[2] for call in calls] == errors
        assert 0.8 <= calls[0][1] <= 1.2
        assert 1.6 <= calls[1][1] <= 2.4
        assert no_sleep.delays == [calls[0][1], calls[1][1]]

    @pytest.mark.asyncio
    async def test_cancellation_error_never_retried(self, no_sleep):
        operation = CountingOperation(always=CancellationError())

        with pytest.raises(CancellationError):
            await with_retry(operation, max_retries=5)

        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_cancelled_token_prevents_first_attempt(self, no_sleep):
        token = CancellationToken()
        token.cancel()
        operation = CountingOperation()

        with pytest.raises(CancellationError):
            await with_retry(operation, token=token)

        assert operation.calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_backoff_stops_retries(self, no_sleep):
        """Test firing the token mid-backoff yields no further attempts."""
        token = CancellationToken()
        no_sleep.hooks.append(lambda seconds: token.cancel("stopped"))
        operation = CountingOperation(always=NetworkError("503"))

        with pytest.raises(CancellationError, match="stopped"):
            await with_retry(operation, max_retries=2, token=token)

        assert operation.calls == 1


@pytest.mark.fast
class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.max_retries == 2
        assert policy.base_delay == 1.0
        assert policy.backoff_factor == 2.0
        assert policy.max_delay == 30.0

    def test_from_settings(self, test_settings):
        settings = test_settings.model_copy(update={"RETRY_MAX_RETRIES": 4, "RETRY_BASE_DELAY": 0.5})
        policy = RetryPolicy.from_settings(settings)
        assert policy.max_retries == 4
        assert policy.base_delay == 0.5

    @pytest.mark.asyncio
    async def test_run_uses_policy_budget(self, no_sleep):
        policy = RetryPolicy(max_retries=1)
        operation = CountingOperation(always=NetworkError("503"))

        with pytest.raises(NetworkError):
            await policy.run(operation, should_retry=is_retryable)

        assert operation.calls == 2
