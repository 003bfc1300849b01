"""Tests for the polling primitives."""

import logging
from unittest.mock import AsyncMock

import pytest

from vizpad_perf.condition_waiter import ConditionWaiter, WaitOutcome


@pytest.fixture
def waiter() -> ConditionWaiter:
    return ConditionWaiter(poll_interval_ms=5, label="User 7")


def sequence(*values):
    """Async predicate returning the given values in turn, then repeating the last."""
    remaining = list(values)

    async def predicate():
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return predicate


async def test_wait_until_returns_true_once_predicate_holds(waiter: ConditionWaiter) -> None:
    """Polls until the predicate flips to True."""
    assert await waiter.wait_until(sequence(False, False, True), timeout_ms=500) is True


async def test_wait_until_times_out(waiter: ConditionWaiter) -> None:
    """Returns False instead of raising when the deadline passes."""
    predicate = AsyncMock(return_value=False)

    assert await waiter.wait_until(predicate, timeout_ms=30) is False
    assert predicate.await_count >= 2


async def test_wait_until_treats_predicate_errors_as_not_yet(waiter: ConditionWaiter) -> None:
    """A raising predicate keeps the wait going rather than aborting it."""
    predicate = AsyncMock(side_effect=[RuntimeError("detached"), False, True])

    assert await waiter.wait_until(predicate, timeout_ms=500) is True
    assert predicate.await_count == 3


async def test_wait_until_evaluates_at_least_once_with_zero_timeout(waiter: ConditionWaiter) -> None:
    """Even with no time budget the condition is checked once."""
    predicate = AsyncMock(return_value=True)

    assert await waiter.wait_until(predicate, timeout_ms=0) is True
    predicate.assert_awaited_once()


async def test_transient_absent_skips_disappearance_check(waiter: ConditionWaiter) -> None:
    """If the indicator never appears, the disappearance predicate is never evaluated."""
    indicator = AsyncMock(return_value=False)
    disappearance = AsyncMock(return_value=True)

    outcome = await waiter.await_transient_condition(
        indicator, disappearance, phase1_timeout_ms=20, phase2_timeout_ms=100
    )

    assert outcome == WaitOutcome.ABSENT
    disappearance.assert_not_awaited()


async def test_transient_cleared(waiter: ConditionWaiter) -> None:
    """Indicator shows up, then clears within phase 2."""
    outcome = await waiter.await_transient_condition(
        sequence(False, True),
        sequence(False, False, True),
        phase1_timeout_ms=200,
        phase2_timeout_ms=200,
    )

    assert outcome == WaitOutcome.CLEARED


async def test_transient_uses_fallback_when_stuck(waiter: ConditionWaiter) -> None:
    """A stuck indicator defers to the fallback signal."""
    fallback = AsyncMock(return_value=True)

    outcome = await waiter.await_transient_condition(
        AsyncMock(return_value=True),
        AsyncMock(return_value=False),
        phase1_timeout_ms=20,
        phase2_timeout_ms=20,
        fallback=fallback,
        fallback_timeout_ms=20,
    )

    assert outcome == WaitOutcome.FALLBACK
    fallback.assert_awaited()


async def test_transient_unresolved_logs_and_proceeds(
    waiter: ConditionWaiter, caplog: pytest.LogCaptureFixture
) -> None:
    """With no conclusive signal the wait logs and returns instead of raising."""
    with caplog.at_level(logging.WARNING):
        outcome = await waiter.await_transient_condition(
            AsyncMock(return_value=True),
            AsyncMock(side_effect=RuntimeError("page crashed")),
            phase1_timeout_ms=20,
            phase2_timeout_ms=20,
            fallback=AsyncMock(return_value=False),
            fallback_timeout_ms=20,
        )

    assert outcome == WaitOutcome.UNRESOLVED
    assert "proceeding anyway" in caplog.text
    assert "User 7" in caplog.text


async def test_wait_until_hidden(waiter: ConditionWaiter, caplog: pytest.LogCaptureFixture) -> None:
    """Overlay waits report whether the overlay went away and never raise."""
    assert await waiter.wait_until_hidden(sequence(True, True, False), timeout_ms=200, poll_interval_ms=5) is True

    with caplog.at_level(logging.WARNING):
        assert await waiter.wait_until_hidden(AsyncMock(return_value=True), timeout_ms=20, poll_interval_ms=5) is False
    assert "continuing with the test" in caplog.text
