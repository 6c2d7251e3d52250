"""
Queue Exceptions

Error taxonomy shared by the scheduler and the automation worker.
"""


class AutomationError(Exception):
    """Base class for every error raised by the form automation queue."""


class ValidationError(AutomationError, ValueError):
    """Raised when an enqueue request is missing its URL or form data."""


class SessionAcquisitionError(AutomationError):
    """Raised when a browser session cannot be launched."""


class NavigationError(AutomationError):
    """Raised when the target page could not be loaded after all attempts."""


class FieldFillError(AutomationError):
    """Raised when a single field could not be filled."""


class UploadTimeoutError(FieldFillError):
    """Raised when no file arrived for a paused upload field in time."""


class TaskCancelled(Exception):
    """Raised when the running task was deleted.

    Not an :class:`AutomationError`; it must always reach the pipeline's
    outer boundary.
    """

    def __init__(self, task_id: str, message: str = "Task cancelled") -> None:
        super().__init__(message)
        self.task_id = task_id
