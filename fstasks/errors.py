"""Exceptions raised by fstasks."""
from typing import Optional


class FSTasksError(RuntimeError):
    """Base class for fstasks failures."""


class APIError(FSTasksError):
    """Backend answered with an HTTP error or a non-success envelope code."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class TransportError(FSTasksError):
    """A request could not be completed; the transfer loop may retry it."""


class UploadStalled(TransportError):
    """A paused batch did not resume within the configured limit."""


class UploadCancelled(FSTasksError):
    """The batch was cancelled; nothing more may be sent for it."""

    def __init__(self, task_id: Optional[str] = None):
        super().__init__(f"upload task {task_id} cancelled" if task_id else "upload cancelled")
        self.task_id = task_id


class BatchValidationError(FSTasksError):
    """Batch creation was rejected; no transfer was started."""


class InvalidTransition(FSTasksError):
    """A task command is not allowed for the task's current status."""
