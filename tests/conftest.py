"""Shared fixtures: an in-memory file console backend."""
import itertools
from typing import Any, Callable, Dict, List, Optional

import pytest

from fstasks.models import ConflictStrategy, LocalFile, Task, TaskPage, UploadConfig
from fstasks.services.cancellation import CancellationRegistry


def join_path(path: str, filename: str) -> str:
    return path.rstrip("/") + "/" + filename.lstrip("/")


def renamed(full_path: str, n: int) -> str:
    head, _, name = full_path.rpartition("/")
    stem, dot, ext = name.partition(".")
    return f"{head}/{stem} ({n}){dot}{ext}"


class FakeFileConsoleAPI:
    """
    Implements IFileConsoleAPI against dictionaries.

    ``stored`` maps full paths to bytes; chunks are kept until the last one
    arrives. ``script`` holds codes or exceptions returned by the next
    upload calls before the normal behaviour kicks in.
    """

    def __init__(self):
        self.stored: Dict[str, bytes] = {}
        self.chunks: Dict[str, Dict[int, bytes]] = {}
        self.chunk_owner: Dict[str, Optional[str]] = {}
        self.tasks: Dict[str, Dict[str, Any]] = {}
        self.uploads: List[Dict[str, Any]] = []
        self.commands: List[tuple] = []
        self.batches: List[Dict[str, Any]] = []
        self.script: List[Any] = []
        self.after_upload: Optional[Callable[[Dict[str, Any]], None]] = None
        self.is_admin = True
        self._ids = itertools.count(1)

    # Helpers for tests

    def add_task(self, task_id: str, status: str = "running", task_type: str = "upload", **extra) -> None:
        self.tasks[task_id] = {
            "id": task_id,
            "task_type": task_type,
            "status": status,
            "name": extra.pop("name", task_id),
            **extra,
        }

    def status(self, task_id: str) -> str:
        return self.tasks[task_id]["status"]

    def uploaded_indices(self, filename: Optional[str] = None) -> List[Optional[int]]:
        return [u["chunk_index"] for u in self.uploads if filename is None or u["filename"] == filename]

    def uploaded_filenames(self) -> List[str]:
        names = []
        for u in self.uploads:
            if u["filename"] not in names:
                names.append(u["filename"])
        return names

    # IFileConsoleAPI

    async def create_upload_batch(self, target_path, files, conflict_strategy):
        task_id = f"task-{next(self._ids)}"
        self.batches.append({"target_path": target_path, "files": files, "strategy": conflict_strategy})
        resolved = []
        for entry in files:
            full = join_path(target_path, entry["path"])
            item = {"original": entry["path"], "resolved": full, "skipped": False}
            if full in self.stored:
                if conflict_strategy == ConflictStrategy.SKIP:
                    item = {"original": entry["path"], "resolved": None, "skipped": True}
                elif conflict_strategy == ConflictStrategy.AUTO_RENAME:
                    n = 1
                    while renamed(full, n) in self.stored:
                        n += 1
                    item["resolved"] = renamed(full, n)
                elif conflict_strategy == ConflictStrategy.OVERWRITE:
                    item["resolved"] = full
            resolved.append(item)

        self.add_task(
            task_id,
            status="running",
            target_path=target_path,
            total_files=len(files),
            total_size=sum(f["size"] for f in files),
            pending_files=[f["path"] for f in files],
        )
        return {"taskId": task_id, "files": resolved}

    async def upload_status(self, path, filename, total_chunks):
        return sorted(self.chunks.get(join_path(path, filename), {}))

    async def upload(
        self,
        path,
        filename,
        content,
        total_size,
        chunk_index=None,
        total_chunks=None,
        task_id=None,
        timeout=None,
    ):
        request = {
            "path": path,
            "filename": filename,
            "chunk_index": chunk_index,
            "total_chunks": total_chunks,
            "size": len(content),
            "task_id": task_id,
            "timeout": timeout,
        }
        self.uploads.append(request)

        if self.script:
            step = self.script.pop(0)
            if isinstance(step, Exception):
                raise step
            if step != 200:
                return {"code": step, "message": f"scripted {step}"}

        task = self.tasks.get(task_id) if task_id else None
        if task is not None and task["status"] == "cancelled":
            return {"code": 499, "message": "cancelled"}
        if task is not None and task["status"] == "paused":
            return {"code": 498, "message": "paused"}

        full = join_path(path, filename)
        if chunk_index is None:
            self.stored[full] = bytes(content)
            self._file_done(task, filename)
        else:
            parts = self.chunks.setdefault(full, {})
            parts[chunk_index] = bytes(content)
            self.chunk_owner[full] = task_id
            if len(parts) == total_chunks:
                self.stored[full] = b"".join(parts[i] for i in range(total_chunks))
                del self.chunks[full]
                self.chunk_owner.pop(full, None)
                self._file_done(task, filename)

        if self.after_upload is not None:
            self.after_upload(request)
        return {"code": 200, "message": "success"}

    def _file_done(self, task, filename):
        if task is None:
            return
        pending = task.get("pending_files") or []
        task["pending_files"] = [p for p in pending if p != filename]
        task["processed_files"] = task.get("processed_files", 0) + 1
        if not task["pending_files"]:
            task["status"] = "completed"

    async def list_tasks(self):
        return [Task.from_dict(t) for t in self.tasks.values()]

    async def list_tasks_paged(self, page=1, page_size=20, task_type=None, status=None):
        tasks = [
            t for t in self.tasks.values()
            if (task_type is None or t["task_type"] == task_type)
            and (status is None or t["status"] == status)
        ]
        start = (page - 1) * page_size
        return TaskPage(
            tasks=[Task.from_dict(t) for t in tasks[start:start + page_size]],
            total=len(tasks),
            total_pages=(len(tasks) + page_size - 1) // page_size,
            is_admin=self.is_admin,
            page=page,
            page_size=page_size,
        )

    async def task_command(self, action, task_id=None):
        self.commands.append((action, task_id))
        task = self.tasks.get(task_id) if task_id else None
        if action == "pause" and task:
            task["status"] = "paused"
        elif action == "resume" and task:
            task["status"] = "running"
        elif action == "cancel" and task:
            task["status"] = "cancelled"
            for full, owner in list(self.chunk_owner.items()):
                if owner == task_id:
                    self.chunks.pop(full, None)
                    self.chunk_owner.pop(full, None)
        elif action == "retry" and task:
            task["status"] = "pending"
            if task["task_type"] == "upload":
                return {
                    "task_id": task_id,
                    "target_path": task.get("target_path", "/"),
                    "pending_files": list(task.get("pending_files") or []),
                }
        elif action == "restart" and task:
            task["status"] = "pending"
        elif action == "remove":
            self.tasks.pop(task_id, None)
        elif action in ("clear", "clear_all"):
            for key in [k for k, t in self.tasks.items() if t["status"] in ("completed", "failed", "cancelled")]:
                del self.tasks[key]
        return {}


@pytest.fixture
def fake_api():
    return FakeFileConsoleAPI()


@pytest.fixture
def registry():
    return CancellationRegistry()


@pytest.fixture
def fast_config():
    """Small chunks and no real sleeping."""
    return UploadConfig(
        chunk_size=16,
        retry_backoff=0,
        pause_poll_interval=0.01,
        pause_poll_max=0.02,
    )


@pytest.fixture
def make_file(tmp_path):
    def _make(relative: str, content: bytes) -> LocalFile:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return LocalFile(path=path, relative_path=relative, size=len(content))

    return _make
