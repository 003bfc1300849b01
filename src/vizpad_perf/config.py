"""
Run configuration for vizpad-perf.

Values come from command-line flags with environment fallbacks; `.env` files
are picked up through python-dotenv so credentials stay out of shell history.
"""

import os
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

# Endpoints whose bodies are inspected for chart/dataset names.
TARGET_APIS = [
    "/vizResponse",
    "/tqlSpark",
    "/getVizMetadata",
    "/annotations/chartFormMappings",
    "/customCalendars",
    "/auth/runtimeConfig",
    "/businessViews",
    "/datasetMetadata",
    "/api/config",
]

# Endpoints kept in the network report.
TRACKED_ENDPOINTS = ["/api/login"] + TARGET_APIS + ["/vizpadView"]


@dataclass(frozen=True)
class Timeouts:
    navigation_ms: int = 1_000_000
    element_ms: int = 300_000
    response_ms: int = 90_000
    network_idle_ms: int = 60_000
    loader_appear_ms: int = 3_000
    loader_clear_ms: int = 300_000
    fallback_ms: int = 10_000
    app_loader_ms: int = 180_000
    app_loader_poll_ms: int = 1_000
    login_request_s: float = 60.0


@dataclass(frozen=True)
class Selectors:
    loading_texts: Tuple[str, ...] = ("Vizpad is loading...", "Chart is loading...")
    text_scope: str = "span, div, p, h1, h2, h3, h4, h5, h6"
    viz_container: str = ".vizContainer"
    search_input: str = "[data-cy-id='cy-search-data']"
    search_value_input: str = "[data-cy-id='cy-search-value']"
    check_box: str = ".checkbox-available"
    filter_apply_btn: str = "[data-cy-id='cy-apply-changes']"
    vizpad_chart: str = "[data-cy-id='cy-vzpd-chart11']"
    filter_icon: str = "[data-testid='viz-filter-icon']"
    filter_column_input: str = "[data-cy-id='cy-popup-fltrclmn-input']"
    filter_column_value: str = "[data-cy-id='cy-popup-fltrclmn-item0']"
    filter_column_value_input: str = "[data-cy-id='cy-popup-rng']"
    date_selection_type: str = "[data-cy-id='cy-tmslc-ctr-dttype-slctr']"
    range_of_dates: str = "[data-cy-id='cy-tmslc-crnttmrng-rng-of-dts']"
    start_date: str = "[data-cy-id='cy-tmslc-ctr-strtdt']"
    end_date: str = "[data-cy-id='cy-tmslc-ctr-enddt']"
    apply_time_filter_btn: str = "[data-cy-id='cy-tmslc-aply']"
    popup_apply_btn: str = "[data-cy-id='cy-popup-aply']"
    tab_prefix: str = "cy-tb"
    app_loader: str = "#appLoader"
    username_input: str = '[data-cy-id="cy-usrnm"]'
    password_input: str = '[data-cy-id="cy-pswrd"]'
    login_button: str = '[data-cy-id="cy-lgn-btn"]'
    standard_login: str = '[data-cy-id="cy-stndrd-lgn"]'

    def tab(self, index: int) -> str:
        return f"[data-cy-id='{self.tab_prefix}{index}']"

    def filter_search(self, title: str) -> str:
        """XPath of the search box inside the filter chart titled `title`."""
        return (
            f"//input[@data-cy-id='cy-viz-title' and @value='{title}']"
            "/ancestor::div[contains(@class,'viz-control-chart')]"
            "//div[@data-cy-id='cy-search-data']"
        )


@dataclass(frozen=True)
class FilterPools:
    area: Tuple[str, ...] = ("AA", "AB", "AC", "ZR")
    region: Tuple[str, ...] = ("AA21", "AB20", "AC20", "AA30", "ZR99")
    territory: Tuple[str, ...] = ("008A", "010A", "019A", "021A", "025A")
    date_column: str = "CONVERSION_DATE"
    date_range_start: date = date(2023, 1, 1)
    date_range_end: date = date(2025, 6, 30)
    min_date_span_days: int = 150

    def values_for(self, kind: str) -> Tuple[str, ...]:
        try:
            return getattr(self, kind)
        except AttributeError:
            raise ValueError(f"Unknown filter type: {kind}") from None


FILTER_TYPES = ("area", "region", "territory")

LOGIN_MODES = ("api", "ui")


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class RunConfig:
    users: int = 1
    tab_count: int = 3
    username: str = ""
    password: str = ""
    login_url: str = ""
    vizpad_url: str = ""
    login_mode: str = "api"
    enable_filters: bool = False
    enable_time_filter: bool = False
    headless: bool = True
    output_dir: Path = Path("testReports")
    viewport: Tuple[int, int] = (1512, 864)
    timeouts: Timeouts = field(default_factory=Timeouts)
    selectors: Selectors = field(default_factory=Selectors)
    filters: FilterPools = field(default_factory=FilterPools)
    tracked_endpoints: Tuple[str, ...] = tuple(TRACKED_ENDPOINTS)
    session_cookie: str = "tellius_session"
    verify_tls: bool = False

    @property
    def screenshot_dir(self) -> Path:
        return Path(self.output_dir) / "screenshots"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None, **overrides) -> "RunConfig":
        """Build a config from VIZPAD_* environment variables.

        Keyword overrides win over the environment; ``None`` overrides are
        ignored so argparse defaults can be passed straight through.
        """
        load_dotenv(env_file)
        values = {
            "users": _env_int("VIZPAD_USERS", 1),
            "tab_count": _env_int("VIZPAD_TAB_COUNT", 3),
            "username": os.getenv("VIZPAD_USERNAME", ""),
            "password": os.getenv("VIZPAD_PASSWORD", ""),
            "login_url": os.getenv("VIZPAD_LOGIN_URL", ""),
            "vizpad_url": os.getenv("VIZPAD_URL", ""),
            "login_mode": os.getenv("VIZPAD_LOGIN_MODE", "api"),
            "enable_filters": _env_bool("VIZPAD_ENABLE_FILTERS"),
            "enable_time_filter": _env_bool("VIZPAD_ENABLE_TIME_FILTER"),
            "headless": _env_bool("PLAYWRIGHT_HEADLESS", True),
            "output_dir": Path(os.getenv("VIZPAD_OUTPUT_DIR", "testReports")),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self) -> List[str]:
        """Return a list of problems; empty when the config is runnable."""
        problems = []
        if self.users < 1:
            problems.append("users must be at least 1")
        if self.tab_count < 0:
            problems.append("tab count cannot be negative")
        if not self.vizpad_url:
            problems.append("vizpad URL is required (--vizpad-url or VIZPAD_URL)")
        if not self.login_url:
            problems.append("login URL is required (--login-url or VIZPAD_LOGIN_URL)")
        if not self.username or not self.password:
            problems.append("username and password are required")
        if self.login_mode not in LOGIN_MODES:
            problems.append(f"login mode must be one of {', '.join(LOGIN_MODES)}")
        return problems
