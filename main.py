#!/usr/bin/env python3
"""
Form Automation System - Main Entry Point

Starts the automation worker on a background event loop and serves the
dashboard API on top of it.

Usage:
    python main.py
    python main.py --port 8080 --headful
    python main.py --config config/settings.json
"""

import argparse
import logging
import sys

from dotenv import load_dotenv

from form_automation.config import load_settings
from form_automation.dashboard import create_app
from form_automation.runtime import AutomationRuntime
from form_automation.utils import ensure_directories, setup_logging

# Load environment variables
load_dotenv()

logger = logging.getLogger("form_automation.main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="form-automation",
        description="Queue-driven web form automation with a dashboard API.",
    )
    parser.add_argument("--config", default=None, help="Path to a JSON settings file")
    parser.add_argument("--host", default=None, help="Dashboard bind address")
    parser.add_argument("--port", type=int, default=None, help="Dashboard port")
    parser.add_argument(
        "--headful",
        action="store_true",
        help="Show the browser window instead of running headless",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    if args.headful:
        settings.headless = False

    setup_logging(settings.log_level)
    ensure_directories(settings.upload_dir)

    logger.info("Starting Form Automation System...")
    runtime = AutomationRuntime(settings)
    runtime.start()
    try:
        app = create_app(runtime)
        logger.info("Dashboard at http://%s:%d", settings.host, settings.port)
        app.run(host=settings.host, port=settings.port, threaded=True)
    finally:
        runtime.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
