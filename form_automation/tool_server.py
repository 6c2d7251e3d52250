"""
Tool Server - stdio entry point

Serves the queue's ``add_task`` / ``view_task`` / ``delete_task`` tools over
the Model Context Protocol on stdin/stdout.  The dashboard runs alongside it
so paused tasks can still receive file uploads.

stdout carries the protocol; logs go to stderr.

Usage:
    form-automation-tools
    form-automation-tools --port 3001 --headful
    form-automation-tools --no-dashboard
"""

import argparse
import asyncio
import logging
import sys
import threading
from typing import Any, Dict, List, Mapping, Optional

import mcp.types as types
from dotenv import load_dotenv
from mcp.server import Server
from mcp.server.stdio import stdio_server
from werkzeug.serving import BaseWSGIServer, make_server

from .config import Settings, load_settings
from .dashboard import create_app
from .queue.api import TOOLS, call_tool
from .runtime import AutomationRuntime
from .utils import ensure_directories, setup_logging

logger = logging.getLogger(__name__)

SERVER_NAME = "form-automation-server"


class ToolError(Exception):
    """A tool call that produced an error payload."""


def dispatch(runtime: AutomationRuntime, name: str, arguments: Optional[Mapping[str, Any]]) -> str:
    """Run one tool call on the runtime's loop thread and return its text.

    Raises:
        ToolError: the tool reported an error.
    """
    payload = runtime.call(call_tool, runtime.scheduler, name, arguments or {})
    text = "\n".join(item["text"] for item in payload["content"] if item.get("type") == "text")
    if payload.get("isError"):
        raise ToolError(text)
    return text


def build_server(runtime: AutomationRuntime) -> Server:
    server = Server(SERVER_NAME)

    @server.list_tools()
    async def list_tools() -> List[types.Tool]:
        return [
            types.Tool(name=t["name"], description=t["description"], inputSchema=t["inputSchema"])
            for t in TOOLS
        ]

    @server.call_tool()
    async def handle_call(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
        # runtime.call blocks until the loop thread answers.
        text = await asyncio.to_thread(dispatch, runtime, name, arguments)
        return [types.TextContent(type="text", text=text)]

    return server


async def serve(runtime: AutomationRuntime) -> None:
    server = build_server(runtime)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def _start_dashboard(runtime: AutomationRuntime, settings: Settings) -> BaseWSGIServer:
    # make_server instead of app.run: the Flask banner would land on stdout.
    httpd = make_server(settings.host, settings.port, create_app(runtime), threaded=True)
    threading.Thread(target=httpd.serve_forever, name="dashboard", daemon=True).start()
    logger.info("Dashboard at http://%s:%d", settings.host, settings.port)
    return httpd


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="form-automation-tools",
        description="Serve the form-automation queue as stdio tools.",
    )
    parser.add_argument("--config", default=None, help="Path to a JSON settings file")
    parser.add_argument("--host", default=None, help="Dashboard bind address")
    parser.add_argument("--port", type=int, default=None, help="Dashboard port")
    parser.add_argument("--headful", action="store_true", help="Show the browser window")
    parser.add_argument(
        "--no-dashboard",
        action="store_true",
        help="Do not start the dashboard (file uploads become unavailable)",
    )
    return parser


def main(argv=None) -> int:
    load_dotenv()
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

    logger.info("Starting Form Automation System with tool server...")
    runtime = AutomationRuntime(settings)
    runtime.start()
    httpd = None
    try:
        if not args.no_dashboard:
            httpd = _start_dashboard(runtime, settings)
        asyncio.run(serve(runtime))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        if httpd is not None:
            httpd.shutdown()
        runtime.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
