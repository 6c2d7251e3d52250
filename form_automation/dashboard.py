"""
Form Automation Dashboard - HTTP API

Flask front end over the automation runtime: enqueue, inspect and delete
tasks, hand files to paused upload fields, and stream live task updates as
server-sent events.
"""

import json
import logging
import queue
import time
from pathlib import Path
from typing import Any, Dict, Iterator

from flask import Flask, Response, jsonify, request, stream_with_context
from werkzeug.utils import secure_filename

from .queue.errors import ValidationError
from .runtime import AutomationRuntime

logger = logging.getLogger(__name__)

KEEPALIVE_SECONDS = 15.0


def _format_sse(message: Dict[str, Any]) -> str:
    return f"event: {message['event']}\ndata: {json.dumps(message['data'])}\n\n"


def create_app(runtime: AutomationRuntime) -> Flask:
    """Build the dashboard app bound to a started :class:`AutomationRuntime`."""
    app = Flask(__name__)
    upload_dir = Path(runtime.settings.upload_dir)

    def scheduler():
        return runtime.scheduler

    @app.route("/api/status")
    def get_status():
        """Queue summary"""
        return jsonify(runtime.call(scheduler().summary))

    @app.route("/api/tasks", methods=["GET"])
    def list_tasks():
        tasks = runtime.call(scheduler().list_all)
        return jsonify([t.to_dict() for t in tasks])

    @app.route("/api/tasks", methods=["POST"])
    def add_task():
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            return jsonify({"error": "Request body must be a JSON object"}), 400
        try:
            task = runtime.call(scheduler().enqueue, body.get("url"), body.get("formData"))
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            logger.exception("Enqueue failed")
            return jsonify({"error": str(e)}), 500
        return jsonify(runtime.call(task.to_dict))

    @app.route("/api/tasks/<task_id>", methods=["GET"])
    def get_task(task_id):
        task = runtime.call(scheduler().get, task_id)
        if task is None:
            return jsonify({"error": "Task not found"}), 404
        return jsonify(runtime.call(task.to_dict))

    @app.route("/api/tasks/<task_id>", methods=["DELETE"])
    def delete_task(task_id):
        if runtime.call(scheduler().delete, task_id):
            return jsonify({"success": True})
        return jsonify({"error": "Task not found"}), 404

    @app.route("/api/tasks/<task_id>/upload", methods=["POST"])
    def upload_file(task_id):
        """Store an uploaded file and resume the task waiting on it."""
        file = request.files.get("file")
        selector = (request.form.get("selector") or "").strip()
        if file is None or not file.filename:
            return jsonify({"error": "No file uploaded"}), 400
        if not selector:
            return jsonify({"error": "selector is required"}), 400

        try:
            upload_dir.mkdir(parents=True, exist_ok=True)
            name = secure_filename(file.filename) or "upload"
            path = upload_dir / f"{int(time.time() * 1000)}-{name}"
            file.save(str(path))
            file_path = str(path.resolve())
            if not runtime.call(scheduler().notify_file_uploaded, task_id, selector, file_path):
                return jsonify({"error": "Task not found"}), 404
        except Exception as e:
            logger.exception("Upload for task %s failed", task_id[:8])
            return jsonify({"error": str(e)}), 500
        return jsonify({"success": True, "path": file_path})

    @app.route("/api/events")
    def stream_events():
        """Server-sent events: ``initialState`` first, then live updates."""
        observer = runtime.call(runtime.broadcaster.attach)

        def generate() -> Iterator[str]:
            try:
                while True:
                    try:
                        message = observer.get(timeout=KEEPALIVE_SECONDS)
                    except queue.Empty:
                        yield ": keepalive\n\n"
                        continue
                    yield _format_sse(message)
            finally:
                runtime.call(runtime.broadcaster.detach, observer)

        return Response(stream_with_context(generate()), mimetype="text/event-stream")

    return app
