"""Tests for retry strategies."""

from unittest.mock import MagicMock

import pytest

from binship.core.errors import CompileError, PublishError, ResolutionError
from binship.core.retry import ExponentialBackoff, RetryContext


class TestExponentialBackoff:
    """Tests for ExponentialBackoff strategy."""

    def test_default_configuration(self):
        strategy = ExponentialBackoff()
        assert strategy.max_attempts == 3
        assert strategy.base_delay == 1.0
        assert strategy.max_delay == 30.0
        assert strategy.jitter is True

    def test_delay_calculation_no_jitter(self):
        """Delays double per attempt and cap at max_delay."""
        strategy = ExponentialBackoff(base_delay=2.0, max_delay=10.0, jitter=False)
        assert strategy.next_delay(1) == 2.0
        assert strategy.next_delay(2) == 4.0
        assert strategy.next_delay(3) == 8.0
        assert strategy.next_delay(4) == 10.0

    def test_jitter_stays_within_range(self):
        strategy = ExponentialBackoff(base_delay=4.0, jitter=True, jitter_range=0.25)
        for _ in range(50):
            assert 3.0 <= strategy.next_delay(1) <= 5.0

    def test_should_retry_only_retryable_errors(self):
        strategy = ExponentialBackoff(max_attempts=3)
        assert strategy.should_retry(1, PublishError("connection reset")) is True
        assert strategy.should_retry(1, PublishError("unauthorized", retryable=False)) is False
        assert strategy.should_retry(1, CompileError("E0425")) is False

    def test_should_retry_at_limit(self):
        strategy = ExponentialBackoff(max_attempts=3)
        assert strategy.should_retry(2, PublishError("x")) is True
        assert strategy.should_retry(3, PublishError("x")) is False


class TestRetryContext:
    """Tests for RetryContext.run."""

    def test_success_first_attempt(self):
        ctx = RetryContext(ExponentialBackoff(), sleep=MagicMock())
        assert ctx.run(lambda: "ok") == "ok"
        assert ctx.attempts == 1
        assert ctx.errors == []

    def test_retries_transient_then_succeeds(self):
        sleep = MagicMock()
        func = MagicMock(side_effect=[ResolutionError("dns", retryable=True), "locked"])
        ctx = RetryContext(ExponentialBackoff(base_delay=1.0, jitter=False), sleep=sleep)

        assert ctx.run(func) == "locked"
        assert ctx.attempts == 2
        sleep.assert_called_once_with(1.0)

    def test_non_retryable_raises_immediately(self):
        sleep = MagicMock()
        func = MagicMock(side_effect=ResolutionError("no matching package", retryable=False))
        ctx = RetryContext(ExponentialBackoff(), sleep=sleep)

        with pytest.raises(ResolutionError):
            ctx.run(func)
        assert func.call_count == 1
        sleep.assert_not_called()

    def test_gives_up_after_max_attempts(self):
        func = MagicMock(side_effect=PublishError("reset"))
        ctx = RetryContext(ExponentialBackoff(max_attempts=3, jitter=False), sleep=MagicMock())

        with pytest.raises(PublishError):
            ctx.run(func)
        assert func.call_count == 3
        assert [attempt for attempt, _, _ in ctx.errors] == [1, 2, 3]

    def test_retry_after_overrides_backoff(self):
        sleep = MagicMock()
        on_retry = MagicMock()
        func = MagicMock(side_effect=[PublishError("429", retry_after=7), "pushed"])
        ctx = RetryContext(ExponentialBackoff(base_delay=1.0, jitter=False), on_retry=on_retry, sleep=sleep)

        ctx.run(func)
        sleep.assert_called_once_with(7.0)
        on_retry.assert_called_once()
        assert on_retry.call_args.args[0] == 1

    def test_passes_arguments(self):
        func = MagicMock(return_value=3)
        RetryContext(ExponentialBackoff()).run(func, 1, key="v")
        func.assert_called_once_with(1, key="v")
