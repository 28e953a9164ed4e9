"""
fstasks - resumable chunked uploads and task tracking for the file console.

Usage:
    from fstasks import TaskClient, ConflictStrategy

    async with TaskClient(api_url, token=token) as client:
        # Upload files/folders into /backup, renaming on conflict
        result = await client.upload([Path("photos")], "/backup")

        # Continue an interrupted upload from the same local folder
        result = await client.resume_upload(task_id, Path("photos"))

        # Observe and control backend tasks
        async with client.watch() as poller:
            print(client.store.buckets.active)
            await client.controller.pause(task_id)
"""
from .orchestrator import BatchUploadProcess, TaskClient
from .models import (
    BatchPlan,
    BatchResult,
    ChunkPlan,
    ConflictStrategy,
    FileOutcome,
    FileResult,
    ResolvedFile,
    RetryTicket,
    Task,
    TaskStatus,
    TaskType,
    UploadConfig,
    WatchConfig,
)
from .errors import (
    APIError,
    BatchValidationError,
    FSTasksError,
    InvalidTransition,
    TransportError,
    UploadCancelled,
    UploadStalled,
)
from .services import (
    CancellationRegistry,
    CancellationToken,
    ChunkScheduler,
    FileConsoleAPI,
    TaskController,
    TaskPoller,
    TaskStore,
    TransferExecutor,
)

__version__ = "0.3.0"
__all__ = [
    # Main
    "TaskClient",
    "BatchUploadProcess",
    # Models
    "BatchPlan",
    "BatchResult",
    "ChunkPlan",
    "ConflictStrategy",
    "FileOutcome",
    "FileResult",
    "ResolvedFile",
    "RetryTicket",
    "Task",
    "TaskStatus",
    "TaskType",
    "UploadConfig",
    "WatchConfig",
    # Errors
    "APIError",
    "BatchValidationError",
    "FSTasksError",
    "InvalidTransition",
    "TransportError",
    "UploadCancelled",
    "UploadStalled",
    # Services
    "CancellationRegistry",
    "CancellationToken",
    "ChunkScheduler",
    "FileConsoleAPI",
    "TaskController",
    "TaskPoller",
    "TaskStore",
    "TransferExecutor",
]
