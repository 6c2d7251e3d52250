# tests/test_scheduler.py

from __future__ import annotations

import pytest

from form_automation.queue.errors import ValidationError
from form_automation.queue.events import (
    FileUploaded,
    TaskAdded,
    TaskDeleted,
    TaskProcessing,
    TaskUpdated,
)
from form_automation.queue.models import FormField, TaskStatus

from .conftest import EventRecorder

FIELDS = [{"selector": "#a", "value": "v"}]


def _active(scheduler):
    return [t for t in scheduler.list_all() if t.status.is_active]


@pytest.mark.parametrize(
    "url, form_data",
    [
        ("", FIELDS),
        ("   ", FIELDS),
        (None, FIELDS),
        ("https://x", []),
        ("https://x", None),
        ("https://x", [{"value": "no selector"}]),
        ("https://x", ["#a"]),
    ],
)
def test_enqueue_rejects_invalid_input(scheduler, url, form_data) -> None:
    recorder = EventRecorder(scheduler, TaskAdded)

    with pytest.raises(ValidationError):
        scheduler.enqueue(url, form_data)

    assert scheduler.list_all() == []
    assert recorder.events == []


def test_enqueue_starts_first_task_and_queues_the_rest(scheduler, started) -> None:
    first = scheduler.enqueue("https://x", FIELDS)
    second = scheduler.enqueue("https://y", [FormField("#b", "w")])

    assert first.status is TaskStatus.PROCESSING
    assert second.status is TaskStatus.QUEUED
    assert started == [first.id]
    assert scheduler.is_processing
    assert scheduler.current_task_id == first.id
    assert scheduler.pending_ids() == [second.id]
    assert second.form_data == [FormField("#b", "w")]


def test_tasks_run_in_fifo_order_one_at_a_time(scheduler, started) -> None:
    tasks = [scheduler.enqueue(f"https://site/{i}", FIELDS) for i in range(5)]

    for expected in tasks:
        assert len(_active(scheduler)) == 1
        assert scheduler.current_task_id == expected.id
        scheduler.complete(expected.id, {"fields": []})

    assert started == [t.id for t in tasks]
    assert not scheduler.is_processing
    assert all(t.status is TaskStatus.COMPLETED for t in tasks)


def test_terminal_reports_advance_the_queue(scheduler, started) -> None:
    a = scheduler.enqueue("https://a", FIELDS)
    b = scheduler.enqueue("https://b", FIELDS)
    c = scheduler.enqueue("https://c", FIELDS)

    scheduler.finish(a.id, TaskStatus.PARTIAL_SUCCESS, result={"fields": []})
    scheduler.fail(b.id, "boom")

    assert a.status is TaskStatus.PARTIAL_SUCCESS
    assert b.status is TaskStatus.FAILED
    assert b.error == "boom"
    assert c.status is TaskStatus.PROCESSING
    assert started == [a.id, b.id, c.id]


def test_deleting_a_queued_task_never_processes_it(scheduler, started) -> None:
    recorder = EventRecorder(scheduler, TaskDeleted)
    running = scheduler.enqueue("https://a", FIELDS)
    doomed = scheduler.enqueue("https://b", FIELDS)
    survivor = scheduler.enqueue("https://c", FIELDS)

    assert scheduler.delete(doomed.id) is True
    assert scheduler.get(doomed.id) is None
    assert doomed.id not in scheduler.pending_ids()
    assert recorder.events == [TaskDeleted(doomed.id)]

    scheduler.complete(running.id)

    assert started == [running.id, survivor.id]
    assert doomed.status is TaskStatus.QUEUED


def test_deleting_the_running_task_waits_for_release(scheduler, started) -> None:
    running = scheduler.enqueue("https://a", FIELDS)
    following = scheduler.enqueue("https://b", FIELDS)

    assert scheduler.delete(running.id) is True
    # The worker still holds the in-flight slot until it unwinds.
    assert scheduler.is_processing
    assert following.status is TaskStatus.QUEUED

    scheduler.release(running.id)

    assert following.status is TaskStatus.PROCESSING
    assert started == [running.id, following.id]


def test_release_of_a_task_that_is_not_in_flight_is_ignored(scheduler) -> None:
    running = scheduler.enqueue("https://a", FIELDS)

    scheduler.release("not-the-running-task")
    assert scheduler.current_task_id == running.id

    scheduler.complete(running.id)
    scheduler.release(running.id)
    assert not scheduler.is_processing


def test_delete_unknown_task_returns_false(scheduler) -> None:
    recorder = EventRecorder(scheduler, TaskDeleted)
    assert scheduler.delete("missing") is False
    assert recorder.events == []


def test_mutations_on_missing_task_are_noops(scheduler) -> None:
    recorder = EventRecorder(scheduler, TaskUpdated)

    scheduler.set_status("missing", TaskStatus.COMPLETED, result={"x": 1})
    scheduler.append_log("missing", "hello")
    scheduler.complete("missing")
    scheduler.fail("missing", "gone")

    assert recorder.events == []
    assert scheduler.list_all() == []


def test_append_log_is_ordered_and_emits_update(scheduler) -> None:
    task = scheduler.enqueue("https://a", FIELDS)
    recorder = EventRecorder(scheduler, TaskUpdated)
    before = task.updated_at

    scheduler.append_log(task.id, "one")
    scheduler.append_log(task.id, "two")

    assert [entry.message for entry in task.logs] == ["one", "two"]
    assert task.logs[0].timestamp <= task.logs[1].timestamp
    assert task.updated_at >= before
    assert len(recorder.events) == 2


def test_set_status_keeps_previous_result_when_none_given(scheduler) -> None:
    task = scheduler.enqueue("https://a", FIELDS)
    scheduler.set_status(task.id, TaskStatus.WAITING_FOR_FILE, result={"selector": "#f"})
    scheduler.set_status(task.id, TaskStatus.PROCESSING)

    assert task.status is TaskStatus.PROCESSING
    assert task.result == {"selector": "#f"}
    assert task.error is None


def test_finish_rejects_non_terminal_status(scheduler) -> None:
    task = scheduler.enqueue("https://a", FIELDS)
    with pytest.raises(ValueError):
        scheduler.finish(task.id, TaskStatus.PROCESSING)


def test_list_all_is_newest_first(scheduler) -> None:
    tasks = [scheduler.enqueue(f"https://site/{i}", FIELDS) for i in range(3)]
    assert [t.id for t in scheduler.list_all()] == [t.id for t in reversed(tasks)]


def test_ids_are_unique_and_not_reused(scheduler) -> None:
    first = scheduler.enqueue("https://a", FIELDS)
    scheduler.delete(first.id)
    second = scheduler.enqueue("https://a", FIELDS)
    assert first.id != second.id


def test_notify_file_uploaded_signals_existing_task(scheduler) -> None:
    task = scheduler.enqueue("https://a", FIELDS)
    recorder = EventRecorder(scheduler, FileUploaded)

    assert scheduler.notify_file_uploaded(task.id, "#upload", "/tmp/cv.pdf") is True

    assert recorder.events == [FileUploaded(task.id, "#upload", "/tmp/cv.pdf")]
    assert task.logs[-1].message == "File uploaded for #upload"


def test_notify_file_uploaded_for_missing_task_signals_nothing(scheduler) -> None:
    recorder = EventRecorder(scheduler, FileUploaded)
    assert scheduler.notify_file_uploaded("missing", "#upload", "/tmp/x") is False
    assert recorder.events == []


def test_failing_observer_does_not_break_mutations(scheduler) -> None:
    def explode(event) -> None:
        raise RuntimeError("observer bug")

    scheduler.events.subscribe(TaskAdded, explode)
    scheduler.events.subscribe(TaskProcessing, explode)

    task = scheduler.enqueue("https://a", FIELDS)

    assert task.status is TaskStatus.PROCESSING


def test_summary_counts_statuses(scheduler) -> None:
    a = scheduler.enqueue("https://a", FIELDS)
    scheduler.enqueue("https://b", FIELDS)
    scheduler.fail(a.id, "nope")

    summary = scheduler.summary()

    assert summary["total"] == 2
    assert summary["queued"] == 0
    assert summary["is_processing"] is True
    assert summary["by_status"]["FAILED"] == 1
    assert summary["by_status"]["PROCESSING"] == 1
