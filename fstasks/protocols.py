"""
Protocols (Interfaces) for Dependency Inversion.

Every component talks to the backend through IFileConsoleAPI, so tests and
alternative transports can be injected.
"""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from .models import ConflictStrategy, Task, TaskPage


@runtime_checkable
class IFileConsoleAPI(Protocol):
    """Interface for the backend upload and task-manager endpoints."""

    async def create_upload_batch(
        self,
        target_path: str,
        files: List[Dict[str, Any]],
        conflict_strategy: ConflictStrategy,
    ) -> Dict[str, Any]:
        """Register a batch; returns ``{taskId, files: [...]}``."""
        ...

    async def upload_status(self, path: str, filename: str, total_chunks: int) -> List[int]:
        """Indices of chunks already persisted for ``path/filename``."""
        ...

    async def upload(
        self,
        path: str,
        filename: str,
        content: bytes,
        total_size: int,
        chunk_index: Optional[int] = None,
        total_chunks: Optional[int] = None,
        task_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send one chunk (or a whole small file); returns ``{code, message}``."""
        ...

    async def list_tasks(self) -> List[Task]:
        """Lightweight task list for the current user."""
        ...

    async def list_tasks_paged(
        self,
        page: int = 1,
        page_size: int = 20,
        task_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> TaskPage:
        """Paged, filterable task list."""
        ...

    async def task_command(self, action: str, task_id: Optional[str] = None) -> Dict[str, Any]:
        """POST a control command; returns the envelope ``data``."""
        ...
