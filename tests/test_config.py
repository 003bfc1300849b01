"""Tests for run configuration and result bookkeeping."""

import pytest

from vizpad_perf.browser_config import BrowserConfig
from vizpad_perf.config import FilterPools, RunConfig, Selectors
from vizpad_perf.data_models import ErrorRecord, TestResult as SessionResult
from vizpad_perf.errors import ConfigError


def test_validate_reports_every_problem() -> None:
    problems = RunConfig(users=0, login_mode="sso").validate()

    assert "users must be at least 1" in problems
    assert any("vizpad URL" in p for p in problems)
    assert any("login URL" in p for p in problems)
    assert "username and password are required" in problems
    assert any("login mode" in p for p in problems)


def test_valid_config(config) -> None:
    assert config.validate() == []
    assert config.screenshot_dir == config.output_dir / "screenshots"


def test_from_env_ignores_none_overrides(monkeypatch) -> None:
    monkeypatch.setenv("VIZPAD_USERS", "4")
    monkeypatch.setenv("VIZPAD_ENABLE_FILTERS", "Yes")
    monkeypatch.setenv("PLAYWRIGHT_HEADLESS", "false")

    config = RunConfig.from_env(users=None, tab_count=2)

    assert config.users == 4
    assert config.tab_count == 2
    assert config.enable_filters is True
    assert config.headless is False


def test_from_env_rejects_bad_integer(monkeypatch) -> None:
    monkeypatch.setenv("VIZPAD_TAB_COUNT", "three")

    with pytest.raises(ConfigError, match="VIZPAD_TAB_COUNT"):
        RunConfig.from_env()


def test_selectors_and_filter_pools() -> None:
    sel = Selectors()

    assert sel.tab(2) == "[data-cy-id='cy-tb2']"
    assert "@value='Area'" in sel.filter_search("Area")
    assert FilterPools().values_for("territory") == ("008A", "010A", "019A", "021A", "025A")
    with pytest.raises(ValueError):
        FilterPools().values_for("district")


def test_result_success_requires_no_errors() -> None:
    result = SessionResult(user_id=1)
    result.add_error(ErrorRecord(step="login", message="401", timestamp="t"))

    result.finalize(True)

    assert result.success is False


def test_finalized_result_is_frozen() -> None:
    result = SessionResult(user_id=1)
    result.record_duration("login", 1.0)
    result.add_screenshot(None)
    result.finalize(True)

    assert result.success is True
    assert result.screenshots == []
    with pytest.raises(RuntimeError):
        result.record_duration("vizpad_load", 2.0)
    with pytest.raises(RuntimeError):
        result.finalize(False)


def test_browser_args_for_headed_runs() -> None:
    headless = BrowserConfig.get_browser_args(headless=True)
    headed = BrowserConfig.get_browser_args(headless=False)

    assert "--single-process" in headless
    assert "--disable-cache" in headless
    assert "--single-process" not in headed
    assert "--start-maximized" in headed
    assert BrowserConfig.get_launch_options(False)["headless"] is False
    assert BrowserConfig.get_context_options((800, 600))["viewport"] == {"width": 800, "height": 600}
