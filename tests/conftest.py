"""Shared fixtures: an in-memory browser driver and a fast run config."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from vizpad_perf.browser_session import BrowserSession
from vizpad_perf.condition_waiter import ConditionWaiter
from vizpad_perf.config import RunConfig, Timeouts
from vizpad_perf.data_models import ErrorRecord, NetworkRequestRecord, TestResult as SessionResult


class FakeDriver:
    """BrowserDriver double that records calls and answers from canned state."""

    def __init__(self):
        self.started = False
        self.closed = False
        self.calls: List[tuple] = []
        self.present = set()
        self.navigate_failures = 0
        self.click_error: Optional[Exception] = None
        self.start_error: Optional[Exception] = None
        self.screenshot_error: Optional[Exception] = None
        self.script_results: Dict[str, Any] = {}
        self.response_errors: Dict[str, Exception] = {}
        self.bodies: Dict[str, Any] = {}
        self.cookies: List[dict] = []
        self.network_handler = None
        self.url = "about:blank"

    async def start(self) -> None:
        if self.start_error:
            raise self.start_error
        self.started = True

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.calls.append(("navigate", url))
        if self.navigate_failures > 0:
            self.navigate_failures -= 1
            raise RuntimeError("net::ERR_CONNECTION_RESET")
        self.url = url

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        self.calls.append(("wait_for_selector", selector))
        if selector not in self.present:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded")

    async def wait_for_function(self, script: str, arg: Any = None, timeout_ms: int = 30_000) -> None:
        self.calls.append(("wait_for_function", arg))
        if not await self.evaluate(script, arg):
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded")

    async def type(self, selector: str, text: str) -> None:
        self.calls.append(("type", selector, text))

    async def click(self, selector: str, timeout_ms: int = 30_000, force: bool = False, click_count: int = 1) -> None:
        self.calls.append(("click", selector))
        if self.click_error:
            raise self.click_error

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.calls.append(("evaluate", script, arg))
        result = self.script_results.get(script)
        if callable(result):
            return result(arg)
        if isinstance(result, Exception):
            raise result
        return result

    async def hover(self, selector: str) -> None:
        self.calls.append(("hover", selector))

    async def press(self, key: str) -> None:
        self.calls.append(("press", key))

    async def screenshot(self, path: str) -> int:
        if self.screenshot_error:
            raise self.screenshot_error
        data = b"\x89PNG fake image"
        Path(path).write_bytes(data)
        return len(data)

    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        self.cookies.append(cookie)

    def on_network_event(self, handler) -> None:
        self.network_handler = handler

    def emit(self, method: str, params: Dict[str, Any]) -> None:
        self.network_handler(method, params)

    async def get_response_body(self, request_id: str) -> Dict[str, Any]:
        body = self.bodies[request_id]
        if isinstance(body, Exception):
            raise body
        return {"body": body if isinstance(body, str) else json.dumps(body), "base64Encoded": False}

    async def wait_for_response(self, url_part: str, method: str, timeout_ms: int) -> None:
        self.calls.append(("wait_for_response", url_part, method))
        if url_part in self.response_errors:
            raise self.response_errors[url_part]

    @property
    def current_url(self) -> str:
        return self.url

    async def close(self) -> None:
        self.closed = True

    def called(self, kind: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == kind]


FAST_TIMEOUTS = Timeouts(
    navigation_ms=1_000,
    element_ms=1_000,
    response_ms=1_000,
    network_idle_ms=200,
    loader_appear_ms=30,
    loader_clear_ms=60,
    fallback_ms=30,
    app_loader_ms=60,
    app_loader_poll_ms=5,
)


@pytest.fixture
def config(tmp_path: Path) -> RunConfig:
    """Runnable config writing into a temp dir with millisecond timeouts."""
    return RunConfig(
        users=2,
        tab_count=2,
        username="perf-user",
        password="secret",
        login_url="https://bi.example.com/api/login",
        vizpad_url="https://bi.example.com/vizpad/abc123",
        output_dir=tmp_path / "reports",
        timeouts=FAST_TIMEOUTS,
    )


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def make_session(config: RunConfig):
    """Factory for sessions backed by FakeDriver instances."""

    def make(user_id: int = 1, driver: Optional[FakeDriver] = None, cfg: Optional[RunConfig] = None) -> BrowserSession:
        drv = driver or FakeDriver()
        return BrowserSession(
            user_id,
            cfg or config,
            driver_factory=lambda _cfg: drv,
            waiter=ConditionWaiter(poll_interval_ms=5, label=f"User {user_id}"),
        )

    return make


@pytest.fixture
async def session(make_session, fake_driver: FakeDriver):
    """A launched session over `fake_driver`."""
    s = make_session(1, fake_driver)
    async with s:
        yield s


def make_result(
    user_id: int,
    durations: Optional[Dict[str, float]] = None,
    success: bool = True,
    requests: Optional[List[NetworkRequestRecord]] = None,
    errors: Optional[List[str]] = None,
) -> SessionResult:
    result = SessionResult(user_id=user_id)
    for step, seconds in (durations or {}).items():
        result.record_duration(step, seconds)
    result.set_network_requests(requests or [])
    for message in errors or ([] if success else ["boom"]):
        result.add_error(ErrorRecord(step="login", message=message, timestamp="t", user_id=user_id))
    result.finalize(success)
    return result


def make_request(
    request_id: str,
    duration_ms: float,
    status: Optional[int] = 200,
    url: str = "https://bi.example.com/vizResponse",
    user_id: int = 1,
) -> NetworkRequestRecord:
    return NetworkRequestRecord(
        request_id=request_id,
        url=url,
        method="POST",
        start_time=1_000.0,
        end_time=1_000.0 + duration_ms,
        duration_ms=duration_ms,
        status=status,
        mime_type="application/json",
        user_id=user_id,
    )
