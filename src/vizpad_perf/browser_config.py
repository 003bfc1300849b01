"""
Browser configuration for vizpad-perf load runs.
Chromium flags are tuned for many concurrent headless instances on one host
and for accurate network timing (cache disabled).
"""

from typing import Dict, List, Tuple


class BrowserConfig:
    """Launch and context options for the per-user Chromium instances."""

    DEFAULT_VIEWPORT = (1512, 864)

    # Resource-lean flags for running many browsers side by side
    BASE_ARGS = [
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-dev-shm-usage",
        "--disable-accelerated-2d-canvas",
        "--disable-gpu",
        "--disable-software-rasterizer",
        "--no-zygote",
        "--single-process",
        # Every user must hit the server, not the disk cache
        "--disable-cache",
    ]

    # Extra flags only meaningful when a window is shown
    HEADED_ARGS = [
        "--start-maximized",
    ]

    @staticmethod
    def get_browser_args(headless: bool = True) -> List[str]:
        """
        Get Chromium arguments for a load-test browser.

        Args:
            headless: Whether the browser runs without a window

        Returns:
            List of browser arguments
        """
        args = list(BrowserConfig.BASE_ARGS)
        if not headless:
            # --single-process is unstable with a visible window
            args = [a for a in args if a != "--single-process"]
            args.extend(BrowserConfig.HEADED_ARGS)
        return args

    @staticmethod
    def get_launch_options(headless: bool = True) -> Dict:
        """Keyword arguments for ``playwright.chromium.launch``."""
        return {
            "headless": headless,
            "args": BrowserConfig.get_browser_args(headless),
        }

    @staticmethod
    def get_context_options(viewport: Tuple[int, int] = DEFAULT_VIEWPORT) -> Dict:
        """Keyword arguments for ``browser.new_context``."""
        width, height = viewport
        return {
            "viewport": {"width": width, "height": height},
            "ignore_https_errors": True,
            "accept_downloads": False,
            "locale": "en-US",
        }
