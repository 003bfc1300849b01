"""
Exception hierarchy for vizpad-perf.

Step-level failures are wrapped in StepFailure so the session boundary knows
which step broke; everything else escaping a session is reported as a
session-level error.
"""

from typing import Optional


class VizpadPerfError(Exception):
    """Base class for all harness errors."""


class ConfigError(VizpadPerfError):
    """Run configuration is incomplete or invalid."""


class ElementNotFound(VizpadPerfError):
    def __init__(self, selector: str, timeout_ms: int, action: str = ""):
        self.selector = selector
        self.timeout_ms = timeout_ms
        label = f"Element not found for {action}" if action else "Element not found"
        super().__init__(f"{label}: {selector} (timeout: {timeout_ms}ms)")


class TextNotFound(VizpadPerfError):
    def __init__(self, text: str, timeout_ms: int):
        self.text = text
        self.timeout_ms = timeout_ms
        super().__init__(f'Text not found: "{text}" (timeout: {timeout_ms}ms)')


class NavigationFailure(VizpadPerfError):
    def __init__(self, url: str, cause: Optional[BaseException] = None):
        self.url = url
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Navigation to {url} failed after retry{detail}")


class LoginFailure(VizpadPerfError):
    """Login request rejected or no session cookie returned."""


class StepFailure(VizpadPerfError):
    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")
