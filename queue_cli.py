#!/usr/bin/env python3
"""
Queue CLI: manage the form-automation queue of a running dashboard.

Commands:
    enqueue   Add a new form task (fields as SELECTOR=VALUE or a JSON file).
    list      Show every task, newest first.
    show      Print one task, including its log.
    delete    Delete (and cancel, if running) a task.
    upload    Provide the file a paused task is waiting for.

Usage examples::

    python queue_cli.py enqueue --url https://demoqa.com/automation-practice-form \\
        --field "#firstName=Ada" --field "#lastName=Lovelace"
    python queue_cli.py enqueue --url https://example.com/form --data fields.json
    python queue_cli.py list
    python queue_cli.py upload 3f2a9c1e... --selector "#uploadPicture" photo.png
"""

import argparse
import json
import os
import sys
from typing import Any, Dict, List

import requests
from dotenv import load_dotenv

DEFAULT_URL = "http://127.0.0.1:3000"
REQUEST_TIMEOUT = 30


class CLIError(Exception):
    """Raised for user-facing command failures."""


# ------------------------------------------------------------------
# HTTP helpers
# ------------------------------------------------------------------

def _request(args: argparse.Namespace, method: str, path: str, **kwargs) -> Any:
    url = args.server.rstrip("/") + path
    try:
        resp = requests.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
    except requests.RequestException as e:
        raise CLIError(f"Could not reach dashboard at {args.server}: {e}") from e
    try:
        payload = resp.json()
    except ValueError:
        payload = {"error": resp.text}
    if resp.status_code >= 400:
        message = payload.get("error") if isinstance(payload, dict) else payload
        raise CLIError(f"{resp.status_code}: {message}")
    return payload


def parse_fields(pairs: List[str]) -> List[Dict[str, str]]:
    """Turn ``SELECTOR=VALUE`` strings into formData entries."""
    fields = []
    for pair in pairs:
        selector, sep, value = pair.partition("=")
        if not sep or not selector.strip():
            raise CLIError(f"Expected SELECTOR=VALUE, got {pair!r}")
        fields.append({"selector": selector.strip(), "value": value})
    return fields


# ------------------------------------------------------------------
# Subcommand handlers
# ------------------------------------------------------------------

def _handle_enqueue(args: argparse.Namespace) -> None:
    """Handler for the ``enqueue`` subcommand."""
    form_data = parse_fields(args.field or [])
    if args.data:
        with open(args.data, "r", encoding="utf-8") as f:
            form_data.extend(json.load(f))
    task = _request(args, "POST", "/api/tasks", json={"url": args.url, "formData": form_data})
    print(f"✓ Enqueued task {task['id'][:8]}…  ({len(form_data)} fields, {args.url})")


def _handle_list(args: argparse.Namespace) -> None:
    """Handler for the ``list`` subcommand."""
    tasks = _request(args, "GET", "/api/tasks")
    if not tasks:
        print("No tasks found.")
        return

    fmt = "{:<10} {:<17} {:<40} {}"
    print(fmt.format("ID", "STATUS", "URL", "ERROR"))
    print("-" * 80)
    for t in tasks:
        error = t.get("error") or ""
        error_preview = (error[:30] + "…") if len(error) > 30 else error
        url = t["url"] if len(t["url"]) <= 40 else t["url"][:39] + "…"
        print(fmt.format(t["id"][:10], t["status"], url, error_preview))


def _handle_show(args: argparse.Namespace) -> None:
    """Handler for the ``show`` subcommand."""
    task = _request(args, "GET", f"/api/tasks/{args.task_id}")
    print(f"Task {task['id']}  [{task['status']}]  {task['url']}")
    if task.get("error"):
        print(f"Error: {task['error']}")
    for entry in task.get("logs", []):
        print(f"  {entry['timestamp']}  {entry['message']}")
    if task.get("result"):
        print(json.dumps(task["result"], indent=2))


def _handle_delete(args: argparse.Namespace) -> None:
    """Handler for the ``delete`` subcommand."""
    _request(args, "DELETE", f"/api/tasks/{args.task_id}")
    print(f"✓ Deleted task {args.task_id[:8]}…")


def _handle_upload(args: argparse.Namespace) -> None:
    """Handler for the ``upload`` subcommand."""
    if not os.path.isfile(args.file):
        raise CLIError(f"No such file: {args.file}")
    with open(args.file, "rb") as f:
        result = _request(
            args,
            "POST",
            f"/api/tasks/{args.task_id}/upload",
            data={"selector": args.selector},
            files={"file": (os.path.basename(args.file), f)},
        )
    print(f"✓ Uploaded {args.file} → {result['path']}")


# ------------------------------------------------------------------
# Argument parser
# ------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="queue_cli",
        description="Manage the form-automation task queue.",
    )
    parser.add_argument(
        "--server",
        default=os.getenv("FORM_AUTOMATION_SERVER", DEFAULT_URL),
        help=f"Dashboard base URL (default {DEFAULT_URL})",
    )
    subs = parser.add_subparsers(dest="command", required=True)

    # -- enqueue --
    enq = subs.add_parser("enqueue", help="Add a form task to the queue.")
    enq.add_argument("--url", required=True, help="Form URL")
    enq.add_argument("--field", action="append", metavar="SELECTOR=VALUE", help="Field to fill (repeatable)")
    enq.add_argument("--data", help="JSON file with a list of {selector, value} objects")

    # -- list --
    subs.add_parser("list", help="List tasks in the queue.")

    # -- show / delete --
    show = subs.add_parser("show", help="Show one task and its log.")
    show.add_argument("task_id")
    delete = subs.add_parser("delete", help="Delete or cancel a task.")
    delete.add_argument("task_id")

    # -- upload --
    upl = subs.add_parser("upload", help="Upload the file a paused task is waiting for.")
    upl.add_argument("task_id")
    upl.add_argument("--selector", required=True, help="Selector of the file input")
    upl.add_argument("file", help="Path of the file to upload")

    return parser


def main(argv=None) -> int:
    """CLI entry-point."""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    handlers = {
        "enqueue": _handle_enqueue,
        "list": _handle_list,
        "show": _handle_show,
        "delete": _handle_delete,
        "upload": _handle_upload,
    }
    try:
        handlers[args.command](args)
    except CLIError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
