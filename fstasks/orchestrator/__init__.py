"""Orchestrator package - coordinates batch uploads."""
from .core import TaskClient
from .batch_planner import BatchPlanner
from .batch_upload import BatchUploadProcess, BatchState, FileUploader
from .file_collector import FileCollector

__all__ = [
    "TaskClient",
    "BatchPlanner",
    "BatchUploadProcess",
    "BatchState",
    "FileUploader",
    "FileCollector",
]
