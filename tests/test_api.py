# tests/test_api.py

from __future__ import annotations

import json

from form_automation.queue.api import TOOLS, call_tool

FORM = [{"selector": "#email", "value": "ada@example.com"}]


def _text(payload) -> str:
    return payload["content"][0]["text"]


def test_tool_definitions() -> None:
    assert [tool["name"] for tool in TOOLS] == ["add_task", "view_task", "delete_task"]
    assert TOOLS[0]["inputSchema"]["required"] == ["url", "formData"]


def test_add_task_returns_id_and_status(scheduler) -> None:
    payload = call_tool(scheduler, "add_task", {"url": "https://x", "formData": FORM})

    body = json.loads(_text(payload))
    assert "isError" not in payload
    assert body["message"] == "Task added successfully"
    assert body["status"] == "PROCESSING"
    assert scheduler.get(body["taskId"]) is not None


def test_add_task_rejects_missing_fields(scheduler) -> None:
    payload = call_tool(scheduler, "add_task", {"url": "https://x"})

    assert payload["isError"] is True
    assert _text(payload) == "Error: URL and formData are required"
    assert scheduler.list_all() == []


def test_view_task_single_and_all(scheduler) -> None:
    first = scheduler.enqueue("https://a", FORM)
    second = scheduler.enqueue("https://b", FORM)

    one = json.loads(_text(call_tool(scheduler, "view_task", {"taskId": first.id})))
    everything = json.loads(_text(call_tool(scheduler, "view_task", {})))

    assert one["id"] == first.id
    assert one["form_data"] == FORM
    assert [t["id"] for t in everything] == [second.id, first.id]


def test_view_unknown_task(scheduler) -> None:
    payload = call_tool(scheduler, "view_task", {"taskId": "nope"})

    assert payload["isError"] is True
    assert _text(payload) == "Task with ID nope not found"


def test_delete_task(scheduler) -> None:
    task = scheduler.enqueue("https://a", FORM)

    assert _text(call_tool(scheduler, "delete_task", {"taskId": task.id})) == (
        f"Task {task.id} deleted successfully"
    )
    assert call_tool(scheduler, "delete_task", {"taskId": task.id})["isError"] is True


def test_unknown_tool(scheduler) -> None:
    payload = call_tool(scheduler, "explode", None)

    assert payload["isError"] is True
    assert _text(payload) == "Error: Unknown tool: explode"
