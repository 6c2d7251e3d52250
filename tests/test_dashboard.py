# tests/test_dashboard.py

from __future__ import annotations

import io
import time

import pytest

from form_automation.dashboard import _format_sse, create_app
from form_automation.runtime import AutomationRuntime

from .fakes import FakeElement, FakeSession, fast_settings, text_fields

URL = "https://demoqa.com/automation-practice-form"


def _page() -> FakeSession:
    return FakeSession(
        {
            **text_fields("#firstName", "#email"),
            "#uploadPicture": FakeElement(type="file"),
            "#submit": FakeElement(tag="button", type="submit"),
        }
    )


@pytest.fixture()
def runtime(tmp_path):
    settings = fast_settings(upload_dir=str(tmp_path / "uploads"), upload_timeout=5.0)
    rt = AutomationRuntime(settings, session_factory=_page)
    rt.start()
    yield rt
    rt.stop()


@pytest.fixture()
def client(runtime):
    app = create_app(runtime)
    app.config["TESTING"] = True
    return app.test_client()


def _wait_for_status(client, task_id, *statuses, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/tasks/{task_id}").get_json()
        if body["status"] in statuses:
            return body
        time.sleep(0.01)
    raise AssertionError(f"task {task_id} never reached {statuses}")


def test_enqueue_and_follow_a_task(client) -> None:
    resp = client.post(
        "/api/tasks",
        json={"url": URL, "formData": [{"selector": "#email", "value": "ada@example.com"}]},
    )
    assert resp.status_code == 200
    task_id = resp.get_json()["id"]

    body = _wait_for_status(client, task_id, "COMPLETED")

    assert body["result"] == {"fields": [{"selector": "#email", "status": "filled"}]}
    assert any(entry["message"] == "Task completed successfully" for entry in body["logs"])
    assert [t["id"] for t in client.get("/api/tasks").get_json()] == [task_id]

    status = client.get("/api/status").get_json()
    assert status["is_processing"] is False
    assert status["by_status"]["COMPLETED"] == 1


@pytest.mark.parametrize(
    "payload",
    [{}, [1], "text", {"url": URL}, {"url": "", "formData": [{"selector": "#a", "value": "1"}]}],
)
def test_enqueue_validation_error(client, payload) -> None:
    resp = client.post("/api/tasks", json=payload)

    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_unknown_task_is_404(client) -> None:
    assert client.get("/api/tasks/nope").status_code == 404
    assert client.delete("/api/tasks/nope").status_code == 404


def test_upload_resumes_a_paused_task(client, tmp_path) -> None:
    resp = client.post(
        "/api/tasks",
        json={
            "url": URL,
            "formData": [
                {"selector": "#firstName", "value": "Ada"},
                {"selector": "#uploadPicture", "value": ""},
            ],
        },
    )
    task_id = resp.get_json()["id"]
    paused = _wait_for_status(client, task_id, "WAITING_FOR_FILE")
    assert paused["result"] == {"selector": "#uploadPicture"}

    upload = client.post(
        f"/api/tasks/{task_id}/upload",
        data={"selector": "#uploadPicture", "file": (io.BytesIO(b"png-bytes"), "my photo.png")},
        content_type="multipart/form-data",
    )

    assert upload.status_code == 200
    saved = upload.get_json()["path"]
    assert saved.startswith(str((tmp_path / "uploads").resolve()))
    assert saved.endswith("-my_photo.png")
    done = _wait_for_status(client, task_id, "COMPLETED", "PARTIAL_SUCCESS", "FAILED")
    assert done["status"] == "COMPLETED"
    assert any(entry["message"] == f"File received: {saved}" for entry in done["logs"])


def test_upload_requires_file_and_selector(client) -> None:
    no_file = client.post("/api/tasks/x/upload", data={"selector": "#f"}, content_type="multipart/form-data")
    no_selector = client.post(
        "/api/tasks/x/upload",
        data={"file": (io.BytesIO(b"x"), "a.txt")},
        content_type="multipart/form-data",
    )

    assert no_file.status_code == 400
    assert no_selector.status_code == 400


def test_upload_for_unknown_task_is_404(client) -> None:
    resp = client.post(
        "/api/tasks/missing/upload",
        data={"selector": "#f", "file": (io.BytesIO(b"x"), "a.txt")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 404


def test_delete_running_task(client, runtime) -> None:
    resp = client.post(
        "/api/tasks",
        json={"url": URL, "formData": [{"selector": "#uploadPicture", "value": ""}]},
    )
    task_id = resp.get_json()["id"]
    _wait_for_status(client, task_id, "WAITING_FOR_FILE")

    assert client.delete(f"/api/tasks/{task_id}").get_json() == {"success": True}

    deadline = time.monotonic() + 3
    while runtime.call(lambda: runtime.scheduler.is_processing) and time.monotonic() < deadline:
        time.sleep(0.01)
    assert runtime.call(lambda: runtime.scheduler.is_processing) is False
    assert client.get(f"/api/tasks/{task_id}").status_code == 404


def test_event_stream_starts_with_initial_state(client) -> None:
    resp = client.get("/api/events")
    try:
        first = next(iter(resp.response))
    finally:
        resp.close()

    if isinstance(first, bytes):
        first = first.decode("utf-8")
    assert first.startswith("event: initialState\ndata: [")
    assert resp.mimetype == "text/event-stream"


def test_format_sse() -> None:
    assert _format_sse({"event": "taskDeleted", "data": "abc"}) == 'event: taskDeleted\ndata: "abc"\n\n'
