"""
Browser session management for vizpad-perf.

A BrowserSession owns one browser/context/page for one simulated user. It
layers retries, timeouts with descriptive errors, a click fallback ladder,
best-effort screenshots and dashboard-specific waits on top of a narrow
driver interface. PlaywrightDriver is the production driver; tests plug in
a fake.
"""

import asyncio
import enum
import json
import logging
import os
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol

from playwright.async_api import async_playwright

from .browser_config import BrowserConfig
from .condition_waiter import ConditionWaiter, WaitOutcome
from .config import RunConfig
from .errors import ElementNotFound, NavigationFailure, TextNotFound
from .network_recorder import NetworkRecorder

logger = logging.getLogger(__name__)

NetworkHandler = Callable[[str, Dict[str, Any]], None]

# In-page scripts. Each takes a single argument.
JS_TEXT_PRESENT = """([texts, scope]) => {
    const elements = Array.from(document.querySelectorAll(scope));
    return texts.some((t) => elements.some((el) => (el.textContent || '').includes(t)));
}"""

# Completion only looks at spans, where the app renders its loading labels.
JS_LOADING_CLEARED = """(texts) => {
    for (const span of document.querySelectorAll('span')) {
        for (const t of texts) {
            if (span.textContent && span.textContent.includes(t)) return false;
        }
    }
    return true;
}"""

JS_ELEMENT_PRESENT = "(selector) => document.querySelector(selector) !== null"

JS_ELEMENT_VISIBLE = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return el.offsetParent !== null && style.display !== 'none' && style.visibility !== 'hidden';
}"""

JS_ELEMENT_INTERACTABLE = """(selector) => {
    const el = document.querySelector(selector);
    return !!el && el.offsetParent !== null && !el.disabled;
}"""

JS_CLICK = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.click();
    return true;
}"""

JS_DISPATCH_CLICK = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.dispatchEvent(new MouseEvent('click', {bubbles: true, cancelable: true, view: window}));
    return true;
}"""

JS_XPATH_PRESENT = """(xpath) => document.evaluate(
    xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null
).singleNodeValue !== null"""

JS_XPATH_CLICK = """(xpath) => {
    const el = document.evaluate(
        xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null
    ).singleNodeValue;
    if (!el) return false;
    el.scrollIntoView();
    el.click();
    return true;
}"""

JS_CLEAR_INPUT = """(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.value = '';
    el.focus();
    el.dispatchEvent(new Event('input', {bubbles: true}));
    el.dispatchEvent(new Event('change', {bubbles: true}));
    return true;
}"""


class BrowserDriver(Protocol):
    """The browser capabilities a session relies on."""

    async def start(self) -> None: ...
    async def navigate(self, url: str, timeout_ms: int) -> None: ...
    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None: ...
    async def wait_for_function(self, script: str, arg: Any = None, timeout_ms: int = 30_000) -> None: ...
    async def type(self, selector: str, text: str) -> None: ...
    async def click(self, selector: str, timeout_ms: int = 30_000, force: bool = False, click_count: int = 1) -> None: ...
    async def evaluate(self, script: str, arg: Any = None) -> Any: ...
    async def hover(self, selector: str) -> None: ...
    async def press(self, key: str) -> None: ...
    async def screenshot(self, path: str) -> int: ...
    async def set_cookie(self, cookie: Dict[str, Any]) -> None: ...
    def on_network_event(self, handler: NetworkHandler) -> None: ...
    async def get_response_body(self, request_id: str) -> Dict[str, Any]: ...
    async def wait_for_response(self, url_part: str, method: str, timeout_ms: int) -> None: ...
    @property
    def current_url(self) -> str: ...
    async def close(self) -> None: ...


class PlaywrightDriver:
    """BrowserDriver backed by Playwright's async API and a DevTools session."""

    def __init__(self, headless: bool = True, viewport=BrowserConfig.DEFAULT_VIEWPORT):
        self.headless = headless
        self.viewport = viewport
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._cdp = None

    async def start(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(**BrowserConfig.get_launch_options(self.headless))
        self._context = await self._browser.new_context(**BrowserConfig.get_context_options(self.viewport))
        self._page = await self._context.new_page()
        self._cdp = await self._context.new_cdp_session(self._page)
        await self._cdp.send("Network.enable")

    async def navigate(self, url: str, timeout_ms: int) -> None:
        await self._page.goto(url, timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, timeout_ms: int) -> None:
        await self._page.wait_for_selector(selector, state="attached", timeout=timeout_ms)

    async def wait_for_function(self, script: str, arg: Any = None, timeout_ms: int = 30_000) -> None:
        await self._page.wait_for_function(script, arg=arg, timeout=timeout_ms)

    async def type(self, selector: str, text: str) -> None:
        await self._page.locator(selector).first.press_sequentially(text)

    async def click(self, selector: str, timeout_ms: int = 30_000, force: bool = False, click_count: int = 1) -> None:
        await self._page.click(selector, timeout=timeout_ms, force=force, click_count=click_count)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._page.evaluate(script, arg)

    async def hover(self, selector: str) -> None:
        await self._page.hover(selector)

    async def press(self, key: str) -> None:
        await self._page.keyboard.press(key)

    async def screenshot(self, path: str) -> int:
        await self._page.screenshot(path=path, full_page=True, type="png")
        return os.path.getsize(path)

    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        await self._context.add_cookies([cookie])

    def on_network_event(self, handler: NetworkHandler) -> None:
        for event in NetworkRecorder.EVENTS:
            self._cdp.on(event, lambda params, _event=event: handler(_event, params))

    async def get_response_body(self, request_id: str) -> Dict[str, Any]:
        return await self._cdp.send("Network.getResponseBody", {"requestId": request_id})

    async def wait_for_response(self, url_part: str, method: str, timeout_ms: int) -> None:
        await self._page.wait_for_response(
            lambda r: url_part in r.url and r.request.method == method,
            timeout=timeout_ms,
        )

    @property
    def current_url(self) -> str:
        return self._page.url if self._page else ""

    async def close(self) -> None:
        try:
            if self._browser:
                await self._browser.close()
        finally:
            self._browser = None
            self._context = None
            self._page = None
            self._cdp = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None


def default_driver_factory(config: RunConfig) -> BrowserDriver:
    return PlaywrightDriver(headless=config.headless, viewport=config.viewport)


class SessionState(str, enum.Enum):
    INIT = "init"
    LAUNCHED = "launched"
    CLOSED = "closed"


class BrowserSession:
    """One user's browser, usable as ``async with BrowserSession(...) as session``."""

    def __init__(
        self,
        user_id: int,
        config: RunConfig,
        driver_factory: Callable[[RunConfig], BrowserDriver] = default_driver_factory,
        waiter: Optional[ConditionWaiter] = None,
        recorder: Optional[NetworkRecorder] = None,
    ):
        self.user_id = user_id
        self.config = config
        self._driver_factory = driver_factory
        self.driver: Optional[BrowserDriver] = None
        self.waiter = waiter or ConditionWaiter(label=f"User {user_id}")
        self.recorder = recorder or NetworkRecorder(user_id=user_id)
        self.state = SessionState.INIT

    @property
    def selectors(self):
        return self.config.selectors

    @property
    def timeouts(self):
        return self.config.timeouts

    async def __aenter__(self) -> "BrowserSession":
        await self.launch()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def launch(self) -> None:
        if self.state != SessionState.INIT:
            raise RuntimeError(f"Session for user {self.user_id} already {self.state.value}")
        driver = self._driver_factory(self.config)
        self.driver = driver
        try:
            await driver.start()
        except BaseException:
            await self.close()
            raise
        self.recorder.body_fetcher = driver.get_response_body
        driver.on_network_event(self.recorder.handle_event)
        self.state = SessionState.LAUNCHED
        logger.info(f"User {self.user_id}: Browser launched")

    async def close(self) -> None:
        if self.state == SessionState.CLOSED:
            return
        self.state = SessionState.CLOSED
        if self.driver is None:
            return
        try:
            await self.driver.close()
            logger.info(f"User {self.user_id}: Browser closed")
        except Exception as e:
            logger.warning(f"User {self.user_id}: Error while closing browser: {e}")

    def _require_driver(self) -> BrowserDriver:
        if self.state != SessionState.LAUNCHED or self.driver is None:
            raise RuntimeError(f"Session for user {self.user_id} is not launched")
        return self.driver

    @property
    def current_url(self) -> str:
        return self.driver.current_url if self.driver else ""

    # --- navigation and waits -------------------------------------------

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        """Open `url`, retrying once immediately on failure."""
        driver = self._require_driver()
        timeout_ms = timeout_ms or self.timeouts.navigation_ms
        try:
            await driver.navigate(url, timeout_ms)
        except Exception as first:
            logger.warning(f"User {self.user_id}: Navigation to {url} failed ({first}), retrying...")
            try:
                await driver.navigate(url, timeout_ms)
            except Exception as second:
                raise NavigationFailure(url, second) from second

    async def wait_for_selector(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        timeout_ms = timeout_ms or self.timeouts.element_ms
        try:
            await self._require_driver().wait_for_selector(selector, timeout_ms)
        except Exception as e:
            raise ElementNotFound(selector, timeout_ms) from e

    async def wait_for_text(self, text: str, timeout_ms: Optional[int] = None) -> None:
        timeout_ms = timeout_ms or self.timeouts.element_ms
        try:
            await self._require_driver().wait_for_function(
                JS_TEXT_PRESENT, [[text], self.selectors.text_scope], timeout_ms
            )
        except Exception as e:
            raise TextNotFound(text, timeout_ms) from e

    async def wait_until_interactable(self, selector: str, timeout_ms: int = 10_000) -> None:
        try:
            await self._require_driver().wait_for_function(JS_ELEMENT_INTERACTABLE, selector, timeout_ms)
        except Exception as e:
            raise ElementNotFound(selector, timeout_ms) from e

    async def wait_for_response(self, url_part: str, method: str = "GET", timeout_ms: Optional[int] = None) -> None:
        await self._require_driver().wait_for_response(url_part, method, timeout_ms or self.timeouts.response_ms)

    async def wait_for_network_idle(self, idle_ms: int = 500, timeout_ms: Optional[int] = None) -> bool:
        """Wait until no request has been in flight for `idle_ms`."""

        async def idle() -> bool:
            return self.recorder.is_idle(idle_ms)

        timeout_ms = timeout_ms or self.timeouts.network_idle_ms
        settled = await self.waiter.wait_until(idle, timeout_ms, poll_interval_ms=100)
        if not settled:
            logger.warning(f"User {self.user_id}: Network still busy after {timeout_ms}ms")
        return settled

    async def wait_for_chart_to_load(self) -> WaitOutcome:
        """Wait out the dashboard's loading labels; never raises on detection failure."""
        driver = self._require_driver()
        texts = list(self.selectors.loading_texts)

        async def indicator() -> bool:
            return await driver.evaluate(JS_TEXT_PRESENT, [texts, self.selectors.text_scope])

        async def cleared() -> bool:
            return await driver.evaluate(JS_LOADING_CLEARED, texts)

        async def container() -> bool:
            return await driver.evaluate(JS_ELEMENT_PRESENT, self.selectors.viz_container)

        return await self.waiter.await_transient_condition(
            indicator,
            cleared,
            phase1_timeout_ms=self.timeouts.loader_appear_ms,
            phase2_timeout_ms=self.timeouts.loader_clear_ms,
            fallback=container,
            fallback_timeout_ms=self.timeouts.fallback_ms,
        )

    async def wait_for_app_loader(self) -> bool:
        driver = self._require_driver()

        async def visible() -> bool:
            return await driver.evaluate(JS_ELEMENT_VISIBLE, self.selectors.app_loader)

        return await self.waiter.wait_until_hidden(
            visible,
            timeout_ms=self.timeouts.app_loader_ms,
            poll_interval_ms=self.timeouts.app_loader_poll_ms,
        )

    async def delay(self, ms: int) -> None:
        await asyncio.sleep(ms / 1000.0)

    # --- interaction ------------------------------------------------------

    async def click(self, selector: str, click_count: int = 1) -> None:
        await self._require_driver().click(selector, self.timeouts.element_ms, click_count=click_count)

    async def type(self, selector: str, text: str) -> None:
        await self._require_driver().type(selector, text)

    async def press(self, key: str) -> None:
        await self._require_driver().press(key)

    async def hover(self, selector: str) -> None:
        await self._require_driver().hover(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self._require_driver().evaluate(script, arg)

    async def set_cookie(self, cookie: Dict[str, Any]) -> None:
        await self._require_driver().set_cookie(cookie)

    async def clear_input(self, selector: str) -> None:
        await self.evaluate(JS_CLEAR_INPUT, selector)
        await self.click(selector, click_count=3)
        await self.press("Backspace")

    async def force_click(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        """Click through overlays: native click, then in-page click(), then a synthetic MouseEvent."""
        driver = self._require_driver()
        timeout_ms = timeout_ms or self.timeouts.element_ms
        try:
            await driver.wait_for_selector(selector, timeout_ms)
        except Exception as e:
            raise ElementNotFound(selector, timeout_ms, action="click") from e

        try:
            await driver.click(selector, timeout_ms, force=True)
            return
        except Exception as e:
            logger.info(f"User {self.user_id}: Normal click failed for {selector} ({e}), trying evaluate click...")

        for script in (JS_CLICK, JS_DISPATCH_CLICK):
            try:
                if await driver.evaluate(script, selector):
                    return
            except Exception as e:
                logger.debug(f"User {self.user_id}: Scripted click failed for {selector}: {e}")

        raise ElementNotFound(selector, timeout_ms, action="click")

    async def click_xpath(self, xpath: str, timeout_ms: int = 30_000) -> None:
        driver = self._require_driver()
        try:
            await driver.wait_for_function(JS_XPATH_PRESENT, xpath, timeout_ms)
            clicked = await driver.evaluate(JS_XPATH_CLICK, xpath)
        except Exception as e:
            raise ElementNotFound(xpath, timeout_ms, action="click") from e
        if not clicked:
            raise ElementNotFound(xpath, timeout_ms, action="click")

    # --- evidence ---------------------------------------------------------

    async def take_screenshot(self, step: str, error: Optional[BaseException] = None) -> Optional[str]:
        """
        Save a full-page PNG for `step`; with `error`, also write a JSON sidecar
        describing it. Returns the PNG path, or None if capture failed.
        """
        if self.driver is None or self.state != SessionState.LAUNCHED:
            logger.info(f"User {self.user_id}: No page available for screenshot")
            return None
        try:
            screenshot_dir = Path(self.config.screenshot_dir)
            screenshot_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().isoformat().replace(":", "-").replace(".", "-")
            base = screenshot_dir / f"user_{self.user_id}_{step}_{timestamp}"
            path = f"{base}.png"

            size = await self.driver.screenshot(path)
            if not size:
                logger.error(f"❌ User {self.user_id}: Screenshot file was not created: {path}")
                return None
            logger.info(f"📸 User {self.user_id}: Screenshot captured: {path} ({size} bytes)")

            if error is not None:
                info = {
                    "userId": self.user_id,
                    "testStep": step,
                    "timestamp": timestamp,
                    "error": str(error),
                    "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__))
                    or "No stack trace available",
                    "url": self.current_url or "Unknown URL",
                }
                sidecar = Path(f"{base}_error.txt")
                sidecar.write_text(json.dumps(info, indent=2), encoding="utf-8")
                logger.info(f"📄 User {self.user_id}: Error info saved: {sidecar}")
            return path
        except Exception as e:
            logger.error(f"❌ Failed to take screenshot for User {self.user_id}: {e}")
            return None
