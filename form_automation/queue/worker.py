"""
Queue Worker

Executes one Task at a time: launches a browser session, navigates to the
form, fills the working set of fields, submits, and reports the outcome
back to the :class:`TaskScheduler`.  Deleting the running task cancels it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Set

from ..browser_automation import BrowserSession
from ..config import Settings
from .cancellation import CancellationToken
from .errors import (
    AutomationError,
    NavigationError,
    SessionAcquisitionError,
    TaskCancelled,
    UploadTimeoutError,
)
from .events import TaskDeleted, TaskProcessing
from .fields import FieldFiller, classify_fields
from .models import FieldResult, FormField, Task, TaskStatus
from .rendezvous import FileRendezvous
from .scheduler import TaskScheduler

logger = logging.getLogger(__name__)

CLEANUP_CSS = (
    "#fixedban, footer, #adplus-anchor, .ad-plus-container, #google_esf "
    "{ display: none !important; }"
)

SUBMIT_SELECTORS = (
    "#submit",
    'button[type="submit"]',
    'input[type="submit"]',
    ".submit-button",
    'button:has-text("Submit")',
    "#FSsubmit",
    'input[name="Submit"]',
)

SUCCESS_KEYWORDS = ("thank", "success", "received", "submitted", "completed")

NO_FIELDS_ERROR = "No matching fields found on the page."
NO_LOOP_ERROR = "Worker event loop is not running"
ALL_FIELDS_FAILED_ERROR = "All fields failed to fill. Check selectors."

SessionFactory = Callable[[], BrowserSession]


class PipelineState(str, Enum):
    INIT = "init"
    NAVIGATING = "navigating"
    FILLING = "filling"
    AWAITING_FILE = "awaiting_file"
    SUBMITTING = "submitting"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskRun:
    """Live state of the task the worker is executing."""

    task_id: str
    state: PipelineState = PipelineState.INIT
    working_set: List[FormField] = field(default_factory=list)
    results: List[FieldResult] = field(default_factory=list)
    failure_count: int = 0
    awaiting_selector: Optional[str] = None


def classify_outcome(failure_count: int, attempted: int) -> TaskStatus:
    """Map a failure tally onto the terminal status of a task."""
    if failure_count == 0:
        return TaskStatus.COMPLETED
    if failure_count < attempted:
        return TaskStatus.PARTIAL_SUCCESS
    return TaskStatus.FAILED


class AutomationWorker:
    """Consumes ``TaskProcessing`` events and runs the automation pipeline.

    Args:
        scheduler:       Owner of the task records; the worker only mutates
                         tasks through its operations.
        session_factory: Returns a fresh, unopened :class:`BrowserSession`.
        settings:        Timeouts and delays.
    """

    def __init__(
        self,
        scheduler: TaskScheduler,
        session_factory: SessionFactory,
        settings: Optional[Settings] = None,
    ) -> None:
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.settings = settings or Settings()
        self.rendezvous = FileRendezvous(scheduler.events)
        self.current_run: Optional[TaskRun] = None
        self._subscription = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._runs: Set["asyncio.Task[None]"] = set()
        self._closers: Set["asyncio.Task[None]"] = set()
        self._session_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Listen for tasks handed out by the scheduler.

        Runs are scheduled on *loop*, which defaults to the running loop.
        Tasks handed out from another thread are passed to that loop.
        """
        if self._subscription is not None:
            return
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop
        self._subscription = self.scheduler.events.subscribe(
            TaskProcessing, self._on_process_task
        )
        logger.info("Worker started and listening for tasks...")

    async def stop(self) -> None:
        """Stop accepting tasks and wait for the current run to unwind."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        for run in list(self._runs):
            run.cancel()
        await self.wait_idle()
        if self._closers:
            await asyncio.gather(*list(self._closers), return_exceptions=True)
        logger.info("Worker stopped")

    async def wait_idle(self) -> None:
        """Wait until no run is in progress (including runs started meanwhile)."""
        while self._runs:
            await asyncio.gather(*list(self._runs), return_exceptions=True)

    def _on_process_task(self, event: TaskProcessing) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._spawn(event.task)
        elif self._loop is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._spawn, event.task)
        else:
            task = event.task
            logger.error("No running event loop for task %s, failing it", task.short_id)
            self.scheduler.append_log(task.id, f"Task failed: {NO_LOOP_ERROR}")
            self.scheduler.fail(task.id, NO_LOOP_ERROR)

    def _spawn(self, task: Task) -> None:
        if self.scheduler.get(task.id) is None:
            # Deleted before the run could start.
            self.scheduler.release(task.id)
            return
        run = asyncio.get_running_loop().create_task(self.run(task))
        self._runs.add(run)
        run.add_done_callback(self._runs.discard)

    def _close_later(self, session: BrowserSession) -> None:
        closer = asyncio.ensure_future(self._close_session(session))
        self._closers.add(closer)
        closer.add_done_callback(self._closers.discard)

    # ------------------------------------------------------------------
    # Core entry-point
    # ------------------------------------------------------------------

    async def run(self, task: Task) -> None:
        """Execute *task* end to end.  Never raises for task-level failures.

        Workflow:
            1. Acquire a browser session.
            2. Navigate with retries and hide ad/footer regions.
            3. Classify the declared fields into the working set.
            4. Fill each field, pausing for manual uploads.
            5. Submit and look for a success message.
            6. Report COMPLETED / PARTIAL_SUCCESS / FAILED.
            7. Release the session.
        """
        token = CancellationToken(task.id)
        run = TaskRun(task_id=task.id)
        holder: List[BrowserSession] = []

        def on_deleted(event: TaskDeleted) -> None:
            if event.task_id != task.id:
                return
            logger.info("Task %s cancelled by user.", task.short_id)
            token.cancel()
            for session in holder:
                self._close_later(session)

        with self.scheduler.events.subscribe(TaskDeleted, on_deleted):
            async with self._session_lock:
                self.current_run = run
                logger.info("Starting task %s for %s", task.short_id, task.url)
                try:
                    token.check()
                    session = await self._acquire_session(token, holder)
                    await self._execute(task, run, session, token)
                except TaskCancelled:
                    self._unwind_cancelled(task, run)
                except Exception as exc:
                    if token.cancelled:
                        self._unwind_cancelled(task, run)
                    else:
                        message = str(exc) or exc.__class__.__name__
                        logger.error("Task %s failed: %s", task.short_id, message)
                        run.state = PipelineState.FAILED
                        self.scheduler.append_log(task.id, f"Task failed: {message}")
                        self.scheduler.fail(task.id, message)
                finally:
                    for session in holder:
                        await self._close_session(session)
                    if self.current_run is run:
                        self.current_run = None

    def _unwind_cancelled(self, task: Task, run: TaskRun) -> None:
        logger.info("Task %s unwound after cancellation", task.short_id)
        run.state = PipelineState.CANCELLED
        self.scheduler.release(task.id)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    async def _acquire_session(
        self, token: CancellationToken, holder: List[BrowserSession]
    ) -> BrowserSession:
        try:
            session = self.session_factory()
            holder.append(session)
            await token.race(session.open())
        except TaskCancelled:
            raise
        except Exception as exc:
            token.check()
            raise SessionAcquisitionError(str(exc) or exc.__class__.__name__) from exc
        return session

    async def _execute(
        self,
        task: Task,
        run: TaskRun,
        session: BrowserSession,
        token: CancellationToken,
    ) -> None:
        log = self._logger_for(task.id)

        run.state = PipelineState.NAVIGATING
        log(f"Navigating to {task.url}")
        await self._navigate(task, session, token)
        await self._clean_page(task, session, token)

        run.state = PipelineState.FILLING
        run.working_set = await classify_fields(session, task.form_data, token, log)
        token.check()
        if not run.working_set:
            run.state = PipelineState.FAILED
            self.scheduler.fail(task.id, NO_FIELDS_ERROR)
            return
        log(f"Identified {len(run.working_set)} fields to fill.")
        await self._fill_fields(task, run, session, token)

        run.state = PipelineState.SUBMITTING
        await self._submit(task, session, token)

        token.check()
        run.state = PipelineState.FINALIZING
        self._finalize(task, run)

        # Leave the final page up for a moment before the browser goes away.
        await token.sleep(self.settings.final_delay)

    async def _navigate(self, task: Task, session: BrowserSession, token: CancellationToken) -> None:
        attempts = self.settings.navigation_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            token.check()
            try:
                await token.race(session.goto(task.url, self.settings.navigation_timeout))
                return
            except TaskCancelled:
                raise
            except Exception as exc:
                token.check()
                last_error = exc
                logger.warning("Navigation attempt %d failed: %s", attempt, exc)
                self.scheduler.append_log(task.id, f"Navigation attempt {attempt} failed: {exc}")
                if attempt < attempts:
                    await token.sleep(self.settings.navigation_retry_delay)
        raise NavigationError(str(last_error)) from last_error

    async def _clean_page(self, task: Task, session: BrowserSession, token: CancellationToken) -> None:
        try:
            token.check()
            await token.race(session.add_style_tag(CLEANUP_CSS))
            self.scheduler.append_log(task.id, "Page loaded & Cleaned")
        except TaskCancelled:
            raise
        except Exception as exc:
            token.check()
            logger.warning("Failed to inject style tag: %s", exc)
            self.scheduler.append_log(task.id, "Warning: Could not hide ads, proceeding anyway.")

    async def _fill_fields(
        self,
        task: Task,
        run: TaskRun,
        session: BrowserSession,
        token: CancellationToken,
    ) -> None:
        log = self._logger_for(task.id)

        async def request_file(selector: str) -> str:
            return await self._await_file(task, run, selector, token)

        filler = FieldFiller(
            session,
            token,
            log,
            request_file,
            wait_timeout=self.settings.field_wait_timeout,
            settle_delay=self.settings.settle_delay,
        )

        for form_field in run.working_set:
            token.check()
            if session.is_closed():
                raise AutomationError("Page closed unexpectedly")

            selector = form_field.selector
            log(f"Processing: {selector}")
            try:
                await filler.fill(form_field)
            except TaskCancelled:
                raise
            except Exception as exc:
                token.check()
                message = str(exc) or exc.__class__.__name__
                run.failure_count += 1
                logger.warning("Failed to fill %s: %s", selector, message)
                log(f"Error filling {selector}: {message}")
                run.results.append(FieldResult(selector, "failed", message))
                continue
            run.results.append(FieldResult(selector, "filled"))

    async def _await_file(
        self,
        task: Task,
        run: TaskRun,
        selector: str,
        token: CancellationToken,
    ) -> str:
        """Pause the pipeline until a file is uploaded for *selector*."""
        token.check()
        run.state = PipelineState.AWAITING_FILE
        run.awaiting_selector = selector
        self.scheduler.set_status(task.id, TaskStatus.WAITING_FOR_FILE, result={"selector": selector})
        self.scheduler.append_log(task.id, f"Waiting for user to upload file for {selector}...")
        try:
            file_path = await self.rendezvous.wait(task.id, selector, self.settings.upload_timeout)
        except UploadTimeoutError:
            self.scheduler.set_status(task.id, TaskStatus.PROCESSING)
            raise
        finally:
            run.state = PipelineState.FILLING
            run.awaiting_selector = None

        token.check()
        self.scheduler.append_log(task.id, f"File received: {file_path}")
        self.scheduler.set_status(task.id, TaskStatus.PROCESSING)
        return file_path

    async def _submit(self, task: Task, session: BrowserSession, token: CancellationToken) -> None:
        log = self._logger_for(task.id)
        try:
            token.check()
            log("Attempting to submit form...")
            clicked = None
            for selector in SUBMIT_SELECTORS:
                token.check()
                try:
                    present = await session.exists(selector)
                except Exception as exc:
                    token.check()
                    logger.debug("Submit probe %s failed: %s", selector, exc)
                    continue
                if present:
                    await session.force_click(selector)
                    clicked = selector
                    log(f"Clicked submit button: {selector}")
                    break

            if clicked is None:
                log("No submit button found, skipping submission.")
                return

            log("Waiting for submission to complete...")
            try:
                await token.race(
                    session.wait_for_text(SUCCESS_KEYWORDS, self.settings.success_timeout),
                    timeout=self.settings.success_timeout,
                )
                log("Success message detected.")
            except TaskCancelled:
                raise
            except Exception:
                token.check()
                log("Warning: Success message not detected (timeout), but proceeding.")

            await token.sleep(self.settings.submit_settle_delay)
        except TaskCancelled:
            raise
        except Exception as exc:
            token.check()
            logger.warning("Error submitting form for task %s: %s", task.short_id, exc)
            log(f"Error submitting form: {exc}")

    def _finalize(self, task: Task, run: TaskRun) -> None:
        attempted = len(run.working_set)
        status = classify_outcome(run.failure_count, attempted)
        result = {"fields": [r.to_dict() for r in run.results]}
        log = self._logger_for(task.id)

        if status is TaskStatus.COMPLETED:
            log("Task completed successfully")
            self.scheduler.complete(task.id, result)
        elif status is TaskStatus.PARTIAL_SUCCESS:
            log(f"Task completed with {run.failure_count} errors")
            self.scheduler.finish(task.id, TaskStatus.PARTIAL_SUCCESS, result=result)
        else:
            log("Task failed: All fields failed")
            self.scheduler.fail(task.id, ALL_FIELDS_FAILED_ERROR, result=result)
        run.state = PipelineState(status.value.lower())
        logger.info(
            "Task %s %s (%d/%d fields failed)",
            task.short_id,
            status.value,
            run.failure_count,
            attempted,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _logger_for(self, task_id: str) -> Callable[[str], None]:
        def log(message: str) -> None:
            self.scheduler.append_log(task_id, message)

        return log

    @staticmethod
    async def _close_session(session: BrowserSession) -> None:
        try:
            await session.close()
        except Exception as exc:
            logger.warning("Error closing browser session: %s", exc)
