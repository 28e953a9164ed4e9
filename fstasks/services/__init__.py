"""Services for fstasks."""
from .api_client import FileConsoleAPI
from .cancellation import CancellationRegistry, CancellationToken, get_cancellation_registry
from .chunking import ChunkScheduler
from .transfer import TransferExecutor
from .task_store import TaskPoller, TaskStore
from .task_controller import TaskController

__all__ = [
    "FileConsoleAPI",
    "CancellationRegistry",
    "CancellationToken",
    "get_cancellation_registry",
    "ChunkScheduler",
    "TransferExecutor",
    "TaskPoller",
    "TaskStore",
    "TaskController",
]
