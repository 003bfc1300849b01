"""
Timed execution of individual user steps, plus the generic retry helper.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from .browser_session import BrowserSession
from .data_models import ErrorRecord, TestResult
from .errors import StepFailure
from .metrics import MetricsCollector

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StepContext:
    """Handed to each step action to steer what gets timed."""

    def __init__(self, name: str, clock: Callable[[], float] = time.perf_counter):
        self.name = name
        self._clock = clock
        self.started = clock()
        self.duration: Optional[float] = None
        self.measurements: Dict[str, float] = {}

    def restart_timer(self) -> None:
        """Begin the timed window now, e.g. right after clicking "apply"."""
        self.started = self._clock()

    def elapsed(self) -> float:
        return self._clock() - self.started

    def set_duration(self, seconds: float) -> None:
        """Report `seconds` as the step's own duration instead of the wall time."""
        self.duration = seconds

    def add_measurement(self, name: str, seconds: float) -> None:
        """Record an extra named duration alongside the step's own."""
        self.measurements[name] = seconds


StepAction = Callable[[BrowserSession, StepContext], Awaitable[None]]


class StepExecutor:
    def __init__(
        self,
        session: BrowserSession,
        result: TestResult,
        metrics: MetricsCollector,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.session = session
        self.result = result
        self.metrics = metrics
        self._clock = clock

    @property
    def user_id(self) -> int:
        return self.result.user_id

    async def run_step(self, name: str, action: StepAction) -> float:
        """
        Run `action`, recording its duration on success.

        On failure a screenshot is taken, the error is recorded on the result
        and in the metrics collector, and StepFailure is raised with the
        original exception as its cause.
        """
        logger.info(f"User {self.user_id}: Starting {name}")
        ctx = StepContext(name, self._clock)
        try:
            await action(self.session, ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"User {self.user_id}: {name} failed: {e}")
            screenshot = await self.session.take_screenshot(f"{name}_failure", e)
            self.result.add_screenshot(screenshot)
            record = ErrorRecord(
                step=name,
                message=str(e),
                timestamp=datetime.now().isoformat(),
                screenshot_path=screenshot,
                user_id=self.user_id,
            )
            self.result.add_error(record)
            self.metrics.add_error(self.user_id, record, name)
            raise StepFailure(name, e) from e

        duration = ctx.duration if ctx.duration is not None else ctx.elapsed()
        self._record(name, duration)
        for extra, seconds in ctx.measurements.items():
            self._record(extra, seconds)
        logger.info(f"✅ User {self.user_id}: {name} completed in {duration:.2f}s")
        return duration

    def _record(self, name: str, seconds: float) -> None:
        self.result.record_duration(name, seconds)
        self.metrics.add_metric(self.user_id, name, seconds)


async def generic_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay_ms: int = 1000,
    label: Optional[str] = None,
) -> T:
    """Retry `operation` with a fixed delay; the last failure propagates unchanged."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    prefix = f"{label}: " if label else ""
    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if attempt == max_attempts:
                raise
            logger.info(
                f"{prefix}Operation failed (attempt {attempt}/{max_attempts}): {e}, retrying in {delay_ms}ms..."
            )
            await asyncio.sleep(delay_ms / 1000.0)
    raise AssertionError("unreachable")
