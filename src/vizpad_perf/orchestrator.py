"""Concurrent execution of simulated user sessions."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from .browser_session import BrowserSession
from .config import RunConfig
from .data_models import ErrorRecord, TestResult
from .errors import StepFailure
from .metrics import MetricsCollector
from .step_executor import StepAction, StepExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Step:
    name: str
    action: StepAction


StepSequenceFactory = Callable[[int], Sequence[Step]]
SessionFactory = Callable[[int, RunConfig], BrowserSession]


def default_session_factory(user_id: int, config: RunConfig) -> BrowserSession:
    return BrowserSession(user_id, config)


class SessionOrchestrator:
    """Runs one isolated browser session per user and collects a TestResult for each."""

    def __init__(
        self,
        config: RunConfig,
        metrics: Optional[MetricsCollector] = None,
        session_factory: SessionFactory = default_session_factory,
    ):
        self.config = config
        self.metrics = metrics or MetricsCollector()
        self._session_factory = session_factory

    async def run_all(self, num_users: int, step_sequence_factory: StepSequenceFactory) -> List[TestResult]:
        """
        Run `num_users` sessions concurrently.

        Always returns exactly one TestResult per user id (1..num_users), in
        user id order, however the individual sessions ended.
        """
        user_ids = list(range(1, num_users + 1))
        logger.info(f"🚀 Starting {num_users} concurrent user sessions")
        tasks = [self.run_session(user_id, step_sequence_factory) for user_id in user_ids]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        return self._process_results(user_ids, outcomes)

    async def run_session(self, user_id: int, step_sequence_factory: StepSequenceFactory) -> TestResult:
        result = TestResult(user_id=user_id)
        completed = False
        try:
            steps = list(step_sequence_factory(user_id))
            session = self._session_factory(user_id, self.config)
            async with session:
                executor = StepExecutor(session, result, self.metrics)
                try:
                    for step in steps:
                        await executor.run_step(step.name, step.action)
                    result.add_screenshot(await session.take_screenshot("test_completion"))
                    completed = True
                except StepFailure as e:
                    logger.error(f"❌ User {user_id}: stopped at step '{e.step}': {e.cause}")
                except Exception as e:
                    screenshot = await session.take_screenshot("test_failure", e)
                    result.add_screenshot(screenshot)
                    self._record_session_error(result, e, screenshot)
                finally:
                    # Network data must be read before the browser goes away.
                    await session.recorder.drain()
                    result.set_network_requests(session.recorder.completed_requests(self.config.tracked_endpoints))
        except Exception as e:
            logger.error(f"❌ User {user_id}: session error: {e}")
            self._record_session_error(result, e)
            completed = False

        result.finalize(completed)
        status = "SUCCESS" if result.success else "FAILED"
        logger.info(f"User {user_id}: session finished ({status})")
        return result

    def _record_session_error(self, result: TestResult, error: BaseException, screenshot: Optional[str] = None) -> None:
        record = ErrorRecord(
            step="test_execution",
            message=str(error) or type(error).__name__,
            timestamp=datetime.now().isoformat(),
            screenshot_path=screenshot,
            user_id=result.user_id,
        )
        result.add_error(record)
        self.metrics.add_error(result.user_id, record, record.step)

    def _process_results(self, user_ids: List[int], outcomes: list) -> List[TestResult]:
        results: List[TestResult] = []
        for user_id, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, BaseException):
                # Anything that escaped the session boundary (e.g. cancellation)
                logger.error(f"❌ User {user_id}: session aborted: {outcome!r}")
                result = TestResult(user_id=user_id)
                self._record_session_error(result, outcome)
                result.finalize(False)
                results.append(result)
            else:
                results.append(outcome)
        return results
