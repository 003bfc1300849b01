"""
The vizpad user journey expressed as a declarative step sequence.

Which steps run is decided once from RunConfig: login, dashboard load,
chart render, one tab switch per configured tab (each optionally followed by
a distinct random filter) and an optional time filter.
"""

import asyncio
import logging
import random
import re
import time
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx

from .browser_session import BrowserSession
from .config import FILTER_TYPES, RunConfig
from .data_models import CHART_NAME, ExtractedField, NetworkRequestRecord
from .errors import LoginFailure
from .orchestrator import Step
from .step_executor import StepContext, generic_retry

logger = logging.getLogger(__name__)

VIZPAD_APIS = ("/auth/runtimeConfig", "/businessViews", "/vizpadView", "/vizItem")

UI_LOGIN_APIS = (
    ("/api/auth/login", "POST"),
    ("/businessViews", "GET"),
    ("/auth/runtimeConfig", "GET"),
)

JS_SET_USER_INFO = "(data) => localStorage.setItem('userInfo', JSON.stringify(data))"

MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def format_date(d: date) -> str:
    """'Jun 28, 2025' style, no day padding."""
    return f"{MONTHS[d.month - 1]} {d.day}, {d.year}"


def random_date_range(
    start: date,
    end: date,
    min_span_days: int,
    rng: random.Random = random,
) -> Tuple[date, date]:
    """Pick a random [from, to] inside [start, end] spanning at least `min_span_days`."""
    total = (end - start).days
    if total < min_span_days:
        raise ValueError(f"Date range {start}..{end} is shorter than {min_span_days} days")
    offset = rng.randint(0, total - min_span_days)
    range_start = start + timedelta(days=offset)
    earliest_end = range_start + timedelta(days=min_span_days)
    range_end = earliest_end + timedelta(days=rng.randint(0, (end - earliest_end).days))
    return range_start, range_end


def pick_filters(tab_count: int, rng: random.Random = random) -> List[Optional[str]]:
    """One filter type per tab, without repeats; tabs beyond the pool get none."""
    available = list(FILTER_TYPES)
    picks: List[Optional[str]] = []
    for _ in range(tab_count):
        if available:
            picks.append(available.pop(rng.randrange(len(available))))
        else:
            picks.append(None)
    return picks


def extract_session_cookie(set_cookie_headers: List[str], name: str) -> Optional[str]:
    pattern = re.compile(rf"{re.escape(name)}=([^;]+)")
    for header in set_cookie_headers:
        match = pattern.search(header)
        if match:
            return match.group(1)
    return None


class VizpadScenario:
    """Builds the per-user step list; pass ``scenario.steps`` to the orchestrator."""

    def __init__(
        self,
        config: RunConfig,
        rng: Optional[random.Random] = None,
        http_client_factory: Callable[..., httpx.AsyncClient] = httpx.AsyncClient,
    ):
        self.config = config
        self.rng = rng or random.Random()
        self._http_client_factory = http_client_factory

    @property
    def selectors(self):
        return self.config.selectors

    def steps(self, user_id: int) -> List[Step]:
        cfg = self.config
        steps = [
            Step("login", self.api_login if cfg.login_mode == "api" else self.ui_login),
            Step("vizpad_load", self.vizpad_load),
            Step("chart_load", self.chart_load),
        ]
        filters = pick_filters(cfg.tab_count, self.rng) if cfg.enable_filters else [None] * cfg.tab_count
        for i, filter_kind in enumerate(filters, start=1):
            steps.append(Step(f"tab_switch_{i}", self._tab_switch(i)))
            if filter_kind:
                steps.append(Step(f"{filter_kind}_filter", self._apply_filter(filter_kind)))
        if cfg.enable_time_filter:
            steps.append(Step("time_filter", self.time_filter))
        logger.debug(f"User {user_id}: step plan {[s.name for s in steps]}")
        return steps

    # --- login ------------------------------------------------------------

    async def api_login(self, session: BrowserSession, ctx: StepContext) -> None:
        cfg = self.config
        user_id = session.user_id
        payload = {"username": cfg.username, "password": cfg.password, "session": True}
        logger.info(f"User {user_id}: Making API login request to: {cfg.login_url}")

        started_ms = round(time.time() * 1000)
        async with self._http_client_factory(verify=cfg.verify_tls, timeout=cfg.timeouts.login_request_s) as client:
            response = await client.post(
                cfg.login_url,
                json=payload,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        ended_ms = round(time.time() * 1000)
        login_seconds = ctx.elapsed()
        logger.info(f"User {user_id}: API login response status: {response.status_code}")

        session.recorder.add_record(NetworkRequestRecord(
            request_id=f"login-{user_id}-{ended_ms}",
            url=cfg.login_url,
            method="POST",
            start_time=started_ms,
            end_time=ended_ms,
            duration_ms=ended_ms - started_ms,
            status=response.status_code,
            mime_type="application/json",
            extracted_field=ExtractedField(CHART_NAME, "API Login"),
        ))

        if not response.is_success:
            raise LoginFailure(f"API login failed with status {response.status_code}: {response.reason_phrase}")

        try:
            body = response.json()
        except ValueError:
            body = {}
        cookie_value = extract_session_cookie(response.headers.get_list("set-cookie"), cfg.session_cookie)
        if not cookie_value:
            raise LoginFailure(f"No {cfg.session_cookie} cookie found in login response")

        await session.set_cookie({
            "name": cfg.session_cookie,
            "value": cookie_value,
            "domain": urlparse(cfg.login_url).hostname,
            "path": "/",
            "secure": True,
            "httpOnly": True,
            "sameSite": "None",
        })
        logger.info(f"User {user_id}: {cfg.session_cookie} cookie set in browser")

        await session.navigate(cfg.vizpad_url)
        await session.evaluate(JS_SET_USER_INFO, {"role": "admin", "id": body.get("id") if isinstance(body, dict) else None})
        logger.info(f"User {user_id}: User data set in localStorage")

        # The API round trip is the login time; the rest is setup.
        ctx.set_duration(login_seconds)
        ctx.add_measurement("api_load", login_seconds)

    async def ui_login(self, session: BrowserSession, ctx: StepContext) -> None:
        cfg = self.config
        sel = self.selectors
        user_id = session.user_id
        await session.navigate(cfg.login_url)

        try:
            await session.wait_for_selector(sel.standard_login, 5_000)
            await session.click(sel.standard_login)
            logger.info(f"User {user_id}: Standard login clicked")
        except Exception:
            logger.info(f"User {user_id}: Standard login not found, proceeding with direct login")

        await session.wait_for_selector(sel.username_input)
        await session.type(sel.username_input, cfg.username)
        await session.wait_for_selector(sel.password_input)
        await session.type(sel.password_input, cfg.password)
        await session.wait_for_selector(sel.login_button)

        waits = [
            asyncio.ensure_future(session.wait_for_response(part, method, cfg.timeouts.navigation_ms))
            for part, method in UI_LOGIN_APIS
        ]
        try:
            await session.click(sel.login_button)
            logger.info(f"User {user_id}: Login form submitted")
            api_started = time.perf_counter()
            await asyncio.gather(*waits)
        finally:
            for w in waits:
                w.cancel()
            await asyncio.gather(*waits, return_exceptions=True)
        ctx.add_measurement("api_load", time.perf_counter() - api_started)
        await session.wait_for_app_loader()

    # --- dashboard --------------------------------------------------------

    async def vizpad_load(self, session: BrowserSession, ctx: StepContext) -> None:
        user_id = session.user_id
        timeout = self.config.timeouts.response_ms
        waits = [asyncio.ensure_future(session.wait_for_response(api, "GET", timeout)) for api in VIZPAD_APIS]
        try:
            await session.navigate(self.config.vizpad_url)
            for api, waiter in zip(VIZPAD_APIS, waits):
                try:
                    await waiter
                except Exception as e:
                    raise RuntimeError(f"API {api.lstrip('/')} failed: {e}") from e
                logger.info(f"User {user_id}: ✅ {api.lstrip('/')} API completed")
        finally:
            for w in waits:
                w.cancel()
            await asyncio.gather(*waits, return_exceptions=True)

    async def chart_load(self, session: BrowserSession, ctx: StepContext) -> None:
        await session.wait_for_chart_to_load()
        await session.wait_for_app_loader()

    def _tab_switch(self, index: int):
        # Tab 1 is the landing tab, so the n-th switch targets tab n+1.
        selector = self.selectors.tab(index + 1)

        async def switch(session: BrowserSession, ctx: StepContext) -> None:
            await session.wait_for_selector(selector)
            await session.click(selector)
            ctx.restart_timer()
            await session.wait_for_chart_to_load()
            await session.wait_for_app_loader()

        return switch

    # --- filters ----------------------------------------------------------

    async def search_and_select_value(self, session: BrowserSession, value: str) -> None:
        sel = self.selectors
        await session.wait_for_selector(sel.search_value_input)
        await session.wait_until_interactable(sel.search_value_input)
        await session.click(sel.search_value_input, click_count=3)
        await session.press("Backspace")
        await session.type(sel.search_value_input, value)
        await session.delay(500)
        await session.press("Enter")
        await session.wait_for_selector(sel.check_box)
        await session.wait_until_interactable(sel.check_box)
        await session.click(sel.check_box)
        await session.delay(500)

    def _apply_filter(self, kind: str):
        title = kind.capitalize()
        values = self.config.filters.values_for(kind)

        async def apply(session: BrowserSession, ctx: StepContext) -> None:
            sel = self.selectors
            await session.wait_for_selector(sel.search_input)
            await session.click_xpath(sel.filter_search(title))
            for value in values:
                await generic_retry(
                    lambda v=value: self.search_and_select_value(session, v),
                    max_attempts=3,
                    delay_ms=1000,
                    label=f"User {session.user_id}",
                )
            await session.wait_for_selector(sel.filter_apply_btn)
            await session.click(sel.filter_apply_btn)
            ctx.restart_timer()
            await session.wait_for_chart_to_load()
            await session.wait_for_app_loader()
            logger.info(f"User {session.user_id}: Waiting for all API calls to complete")
            await session.wait_for_network_idle(500)

        return apply

    async def time_filter(self, session: BrowserSession, ctx: StepContext) -> None:
        sel = self.selectors
        pools = self.config.filters
        start, end = random_date_range(pools.date_range_start, pools.date_range_end, pools.min_date_span_days, self.rng)
        start_text, end_text = format_date(start), format_date(end)
        logger.info(f"User {session.user_id}: Testing with time range: {start_text} to {end_text}")

        # Hovering a chart that is still rendering misses the filter icon.
        await session.wait_for_chart_to_load()
        await session.wait_for_selector(sel.vizpad_chart)
        await session.hover(sel.vizpad_chart)
        await session.force_click(sel.filter_icon)

        await session.wait_for_selector(sel.filter_column_input)
        await session.click(sel.filter_column_input)
        await session.type(sel.filter_column_input, pools.date_column)
        await session.wait_for_selector(sel.filter_column_value)
        await session.click(sel.filter_column_value)
        await session.wait_for_selector(sel.filter_column_value_input)
        await session.click(sel.filter_column_value_input)
        await session.wait_for_network_idle(500, 30_000)

        await session.wait_for_selector(sel.date_selection_type)
        await session.click(sel.date_selection_type)
        await session.wait_for_selector(sel.range_of_dates)
        await session.click(sel.range_of_dates)

        for field_selector, text in ((sel.start_date, start_text), (sel.end_date, end_text)):
            await session.wait_for_selector(field_selector)
            await session.clear_input(field_selector)
            await session.type(field_selector, text)

        await session.force_click(sel.apply_time_filter_btn)
        await session.force_click(sel.popup_apply_btn)
        ctx.restart_timer()
        await session.wait_for_chart_to_load()
