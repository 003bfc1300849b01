"""
Polling primitives used to detect when the dashboard has settled.

A ConditionWaiter is cheap and holds no state between calls; each
BrowserSession owns its own instance so log lines carry the right user.
"""

import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Predicate = Callable[[], Awaitable[bool]]


class WaitOutcome(str, enum.Enum):
    ABSENT = "absent"          # indicator never showed up
    CLEARED = "cleared"        # indicator appeared, then went away
    FALLBACK = "fallback"      # indicator stuck, fallback signal satisfied
    UNRESOLVED = "unresolved"  # nothing conclusive, caller proceeds anyway


class ConditionWaiter:
    def __init__(
        self,
        poll_interval_ms: int = 250,
        label: str = "",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.poll_interval_ms = poll_interval_ms
        self.label = label
        self._clock = clock
        self._sleep = sleep

    def _prefix(self) -> str:
        return f"{self.label}: " if self.label else ""

    async def _check(self, predicate: Predicate) -> bool:
        try:
            return bool(await predicate())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"{self._prefix()}condition check raised {e!r}, treating as not met")
            return False

    async def wait_until(
        self,
        predicate: Predicate,
        timeout_ms: int,
        poll_interval_ms: Optional[int] = None,
    ) -> bool:
        """Poll `predicate` until it returns True or `timeout_ms` elapses.

        The predicate is always evaluated at least once. Exceptions raised by
        the predicate count as "not yet".
        """
        interval = (poll_interval_ms or self.poll_interval_ms) / 1000.0
        deadline = self._clock() + timeout_ms / 1000.0
        while True:
            if await self._check(predicate):
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            await self._sleep(min(interval, remaining))

    async def await_transient_condition(
        self,
        indicator: Predicate,
        disappearance: Predicate,
        phase1_timeout_ms: int,
        phase2_timeout_ms: int,
        fallback: Optional[Predicate] = None,
        fallback_timeout_ms: int = 10_000,
    ) -> WaitOutcome:
        """Wait for a loading indicator to appear and then clear.

        Phase 1 gives the indicator `phase1_timeout_ms` to show up; if it never
        does the operation is considered already complete. Phase 2 waits for
        `disappearance`. When that times out the optional fallback signal is
        tried. Detection problems are logged, never raised.
        """
        prefix = self._prefix()
        if not await self.wait_until(indicator, phase1_timeout_ms):
            logger.info(f"{prefix}No loading indicator found, proceeding...")
            return WaitOutcome.ABSENT

        logger.info(f"{prefix}Loading indicator present, waiting for it to clear...")
        if await self.wait_until(disappearance, phase2_timeout_ms):
            logger.info(f"{prefix}Loading completed")
            return WaitOutcome.CLEARED

        logger.warning(f"{prefix}Loading indicator still present after {phase2_timeout_ms}ms")
        if fallback is not None and await self.wait_until(fallback, fallback_timeout_ms):
            logger.info(f"{prefix}Loaded (fallback signal)")
            return WaitOutcome.FALLBACK

        logger.warning(f"{prefix}Fallback signal also failed, proceeding anyway...")
        return WaitOutcome.UNRESOLVED

    async def wait_until_hidden(
        self,
        is_visible: Predicate,
        timeout_ms: int,
        poll_interval_ms: int = 1_000,
        what: str = "App loader",
    ) -> bool:
        """Wait for a blocking overlay to go away; gives up quietly on timeout."""
        prefix = self._prefix()

        async def hidden() -> bool:
            return not await is_visible()

        if await self.wait_until(hidden, timeout_ms, poll_interval_ms):
            logger.debug(f"{prefix}{what} is gone")
            return True
        logger.warning(
            f"{prefix}{what} did not disappear within {timeout_ms // 1000}s, continuing with the test"
        )
        return False
