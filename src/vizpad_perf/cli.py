"""
vizpad-perf CLI - command-line entry point for concurrent vizpad load runs
"""

import asyncio
import argparse
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import LOGIN_MODES, RunConfig
from .errors import ConfigError
from .metrics import MetricsCollector
from .orchestrator import SessionOrchestrator
from .report import generate_report
from .report_writer import format_summary, save_report
from .scenario import VizpadScenario

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(log_file: str = "vizpad_perf.log", level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


def _flag(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected true/false, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vizpad-perf",
        description="vizpad-perf - measure vizpad latency under N concurrent browser users",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  vizpad-perf --users 5 --vizpad-url https://host/vizpad/abc --login-url https://host/api/login
  vizpad-perf --users 10 --tab-count 2 --enable-filters true --enable-time-filter true

Credentials and URLs may also come from VIZPAD_* variables or a .env file.
        """,
    )
    parser.add_argument("--users", type=int, default=None, help="Number of concurrent users (VIZPAD_USERS)")
    parser.add_argument("--tab-count", type=int, default=None, help="Tabs to switch through (VIZPAD_TAB_COUNT)")
    parser.add_argument("--username", type=str, default=None, help="Login username (VIZPAD_USERNAME)")
    parser.add_argument("--password", type=str, default=None, help="Login password (VIZPAD_PASSWORD)")
    parser.add_argument("--login-url", type=str, default=None, help="Login endpoint or page (VIZPAD_LOGIN_URL)")
    parser.add_argument("--vizpad-url", type=str, default=None, help="Vizpad to load (VIZPAD_URL)")
    parser.add_argument("--login-mode", choices=LOGIN_MODES, default=None, help="api (default) or ui")
    parser.add_argument("--enable-filters", type=_flag, default=None, help="Apply a random filter after each tab switch")
    parser.add_argument("--enable-time-filter", type=_flag, default=None, help="Apply a random time filter at the end")
    parser.add_argument("--output", type=str, default=None, help="Output directory for reports (VIZPAD_OUTPUT_DIR)")
    parser.add_argument("--headed", action="store_true", default=False, help="Show browser windows")
    parser.add_argument("--top-k", type=int, default=15, help="Slowest requests to list in the summary")
    parser.add_argument("--env-file", type=str, default=None, help="Load environment from this file")
    parser.add_argument("--log-file", type=str, default="vizpad_perf.log", help="Log file path")
    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    output_dir = None
    if args.output:
        output_dir = Path(args.output)
        if not output_dir.is_absolute():
            output_dir = Path.cwd() / output_dir
    return RunConfig.from_env(
        env_file=args.env_file,
        users=args.users,
        tab_count=args.tab_count,
        username=args.username,
        password=args.password,
        login_url=args.login_url,
        vizpad_url=args.vizpad_url,
        login_mode=args.login_mode,
        enable_filters=args.enable_filters,
        enable_time_filter=args.enable_time_filter,
        output_dir=output_dir,
        headless=False if args.headed else None,
    )


async def run_load_test(config: RunConfig, top_k: int = 15, scenario: Optional[VizpadScenario] = None):
    """Run every session, then build and persist the report. Returns the report."""
    metrics = MetricsCollector()
    orchestrator = SessionOrchestrator(config, metrics)
    scenario = scenario or VizpadScenario(config)

    results = await orchestrator.run_all(config.users, scenario.steps)

    report = generate_report(
        results,
        config,
        metrics.get_script_run_time(),
        top_k=top_k,
        generated_at=datetime.now().isoformat(),
    )
    save_report(report, config)
    for line in format_summary(report):
        logger.info(line)
    return report


async def main(argv: Optional[List[str]] = None) -> int:
    """Main execution function for vizpad-perf."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_file)

    try:
        config = config_from_args(args)
    except ConfigError as e:
        logger.error(f"❌ {e}")
        return 1

    problems = config.validate()
    if problems:
        for problem in problems:
            logger.error(f"❌ {problem}")
        return 1

    logger.info("=" * 60)
    logger.info("🔬 vizpad-perf - concurrent vizpad performance test")
    logger.info("=" * 60)
    logger.info(f"👥 Users: {config.users}")
    logger.info(f"📑 Tab count: {config.tab_count}")
    logger.info(f"🔐 Login: {config.login_mode} as {config.username} via {config.login_url}")
    logger.info(f"📊 Vizpad URL: {config.vizpad_url}")
    logger.info(f"🧮 Filters: {config.enable_filters}, time filter: {config.enable_time_filter}")
    logger.info(f"📁 Output directory: {config.output_dir}")

    try:
        await run_load_test(config, top_k=args.top_k)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("⚠️ Load test interrupted by user")
        return 2
    return 0


def run():
    """Entry point for the CLI."""
    load_dotenv()
    if os.name == "nt":
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
