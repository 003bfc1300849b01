#!/usr/bin/env python3
"""
Setup script for the browser side of vizpad-perf.
Installs Chromium for Playwright, writes a starter .env and smoke-tests a launch.
"""

import asyncio
import subprocess
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent / "src"))

ENV_TEMPLATE = [
    "",
    "# vizpad-perf configuration",
    "VIZPAD_USERNAME=",
    "VIZPAD_PASSWORD=",
    "VIZPAD_LOGIN_URL=https://your-host/api/login",
    "VIZPAD_URL=https://your-host/vizpad/<id>",
    "VIZPAD_USERS=1",
    "VIZPAD_TAB_COUNT=3",
    "# api (cookie injection) or ui (login form)",
    "VIZPAD_LOGIN_MODE=api",
    "VIZPAD_ENABLE_FILTERS=false",
    "VIZPAD_ENABLE_TIME_FILTER=false",
    "# Set to 'false' to watch the sessions run",
    "PLAYWRIGHT_HEADLESS=true",
]


def check_playwright_package():
    """Check that the playwright Python package is importable."""
    try:
        import playwright  # noqa: F401
    except ImportError:
        print("❌ The playwright package is not installed!")
        print("Install the project first: pip install -e .")
        return False
    print("✅ playwright package is installed")
    return True


def install_browsers():
    """Install Chromium (and on Linux its system dependencies)."""
    print("\n🌐 Installing Chromium for Playwright...")
    cmd = [sys.executable, "-m", "playwright", "install", "chromium"]
    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, capture_output=True, text=True)
    if result.returncode != 0:
        print(f"⚠️ Browser installation had issues: {result.stderr}")
        return False
    print("✅ Chromium browser installed")

    if sys.platform.startswith("linux"):
        print("\n📦 Installing system dependencies (Linux)...")
        result = subprocess.run(
            [sys.executable, "-m", "playwright", "install-deps", "chromium"],
            capture_output=True,
            text=True,
        )
        if result.returncode == 0:
            print("✅ System dependencies installed")
        else:
            print("⚠️ Could not install system dependencies (try again with sudo)")
    return True


def create_env_file(env_path=Path(".env")):
    """Append the vizpad-perf settings to .env unless they are already there."""
    print("\n📝 Configuring environment settings...")
    lines = []
    if env_path.exists():
        lines = env_path.read_text(encoding="utf-8").splitlines()
    if any(line.strip().startswith("VIZPAD_") for line in lines):
        print(f"✅ vizpad-perf settings already configured in {env_path}")
        return
    env_path.write_text("\n".join(lines + ENV_TEMPLATE) + "\n", encoding="utf-8")
    print(f"✅ Wrote vizpad-perf settings to {env_path}, fill in the credentials and URLs")


async def _launch_once():
    from vizpad_perf.browser_session import PlaywrightDriver

    driver = PlaywrightDriver(headless=True)
    try:
        await driver.start()
        await driver.navigate("about:blank", 30_000)
        return await driver.evaluate("() => navigator.userAgent")
    finally:
        await driver.close()


def check_browser_launch():
    """Launch Chromium once through the harness' own driver."""
    print("\n🧪 Testing browser launch...")
    try:
        user_agent = asyncio.run(_launch_once())
    except Exception as e:
        print(f"⚠️ Browser launch failed: {e}")
        return False
    print(f"✅ Chromium launched: {user_agent}")
    return True


def main():
    """Main setup function."""
    print("=" * 60)
    print("🔧 vizpad-perf Browser Setup")
    print("=" * 60)

    if not check_playwright_package():
        return 1

    if not install_browsers():
        print("\nYou can try manual installation:")
        print(f"  {sys.executable} -m playwright install chromium")

    create_env_file()

    if check_browser_launch():
        print("\n" + "=" * 60)
        print("✅ Setup completed successfully!")
        print("=" * 60)
        print("\n📌 Next steps:")
        print("1. Fill in VIZPAD_USERNAME, VIZPAD_PASSWORD and the URLs in .env")
        print("2. Run: vizpad-perf --users 1")
        return 0

    print("\n⚠️ Setup completed with warnings")
    print("\nIf the browser isn't launching, try:")
    print(f"1. Run: {sys.executable} -m playwright install chromium")
    print(f"2. On Linux: sudo {sys.executable} -m playwright install-deps")
    return 1


if __name__ == "__main__":
    sys.exit(main())
