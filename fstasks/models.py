"""
Models for fstasks.

Task snapshots mirror what the backend task manager reports; everything else
is client-local and lives only for one batch.
"""
import math
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional


MB = 1024 * 1024
DEFAULT_CHUNK_SIZE = 32 * MB


class TaskType(Enum):
    """Kind of filesystem operation tracked by the backend."""
    UPLOAD = "upload"
    DOWNLOAD = "download"
    COPY = "copy"
    MOVE = "move"
    DELETE = "delete"
    EXTRACT = "extract"


class TaskStatus(Enum):
    """Backend task status."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    INTERRUPTED = "interrupted"

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.PENDING, TaskStatus.RUNNING, TaskStatus.PAUSED)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class ConflictStrategy(Enum):
    """What the backend does when a destination name already exists."""
    AUTO_RENAME = "auto_rename"
    OVERWRITE = "overwrite"
    SKIP = "skip"


_PHASE_RE = re.compile(r"^\[(.+?)\]\s*(.*)$")


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class Task:
    """Immutable snapshot of one backend task."""
    id: str
    type: TaskType
    status: TaskStatus
    name: str = ""
    source_path: str = ""
    target_path: Optional[str] = None
    total_size: int = 0
    processed_size: int = 0
    total_files: int = 0
    processed_files: int = 0
    progress: float = 0.0
    speed: float = 0.0
    eta_seconds: Optional[int] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    error: Optional[str] = None
    owner: Optional[str] = None
    current_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Build a task from the backend JSON shape (``task_type``, ``user_id``...)."""
        owner = data.get("username") or data.get("user_id") or data.get("owner")
        return cls(
            id=str(data["id"]),
            type=TaskType(data.get("task_type") or data.get("type")),
            status=TaskStatus(data["status"]),
            name=data.get("name") or "",
            source_path=data.get("source_path") or "",
            target_path=data.get("target_path"),
            total_size=int(data.get("total_size") or 0),
            processed_size=int(data.get("processed_size") or 0),
            total_files=int(data.get("total_files") or 0),
            processed_files=int(data.get("processed_files") or 0),
            progress=float(data.get("progress") or 0.0),
            speed=float(data.get("speed") or 0.0),
            eta_seconds=_optional_int(data.get("eta_seconds")),
            created_at=data.get("created_at"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            error=data.get("error"),
            owner=str(owner) if owner is not None else None,
            current_file=data.get("current_file"),
        )

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def current_phase(self) -> Optional[str]:
        """Phase tag of ``current_file`` (``"[hashing] a.bin"`` -> ``"hashing"``)."""
        if not self.current_file:
            return None
        match = _PHASE_RE.match(self.current_file)
        return match.group(1) if match else None

    @property
    def current_name(self) -> Optional[str]:
        """``current_file`` without its phase tag."""
        if not self.current_file:
            return None
        match = _PHASE_RE.match(self.current_file)
        return match.group(2) if match else self.current_file


@dataclass(frozen=True)
class TaskPage:
    """One page of the admin/manage task listing."""
    tasks: List[Task]
    total: int = 0
    total_pages: int = 0
    is_admin: bool = False
    page: int = 1
    page_size: int = 20


@dataclass
class ChunkPlan:
    """Chunk layout of one file and the indices the backend already holds."""
    total_size: int
    chunk_size: int
    uploaded_chunks: FrozenSet[int] = frozenset()

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        # Indices outside the file never count as uploaded
        self.uploaded_chunks = frozenset(
            i for i in self.uploaded_chunks if 0 <= i < self.total_chunks
        )

    @property
    def total_chunks(self) -> int:
        return math.ceil(self.total_size / self.chunk_size)

    @property
    def is_chunked(self) -> bool:
        return self.total_chunks > 1

    def byte_range(self, index: int) -> tuple[int, int]:
        """Half-open byte range ``[start, end)`` covered by chunk ``index``."""
        if not 0 <= index < self.total_chunks:
            raise IndexError(f"chunk {index} out of range 0..{self.total_chunks - 1}")
        start = index * self.chunk_size
        return start, min(start + self.chunk_size, self.total_size)

    def chunk_length(self, index: int) -> int:
        start, end = self.byte_range(index)
        return end - start

    def pending_indices(self) -> List[int]:
        """Indices still to send, ascending."""
        return [i for i in range(self.total_chunks) if i not in self.uploaded_chunks]

    @property
    def uploaded_size(self) -> int:
        return sum(self.chunk_length(i) for i in self.uploaded_chunks)


@dataclass(frozen=True)
class LocalFile:
    """A local file queued for upload."""
    path: Path
    relative_path: str
    size: int


@dataclass(frozen=True)
class ResolvedFile:
    """Server decision for one file of a batch."""
    original: str
    resolved: Optional[str]
    skipped: bool = False

    @property
    def should_transfer(self) -> bool:
        return not self.skipped and self.resolved is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedFile":
        return cls(
            original=data["original"],
            resolved=data.get("resolved"),
            skipped=bool(data.get("skipped", False)),
        )


@dataclass(frozen=True)
class BatchPlan:
    """Batch task registered with the backend plus its name resolutions."""
    task_id: str
    target_path: str
    files: List[ResolvedFile] = field(default_factory=list)

    def resolution_for(self, relative_path: str) -> Optional[ResolvedFile]:
        for resolved in self.files:
            if resolved.original == relative_path:
                return resolved
        return None


class FileOutcome(Enum):
    """Tagged result of one file within a batch."""
    UPLOADED = "uploaded"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FileResult:
    """Immutable result of uploading one file."""
    relative_path: str
    outcome: FileOutcome
    filename: Optional[str] = None
    bytes_sent: int = 0
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (FileOutcome.UPLOADED, FileOutcome.SKIPPED)

    @classmethod
    def ok(cls, relative_path: str, filename: str, bytes_sent: int = 0):
        return cls(relative_path, FileOutcome.UPLOADED, filename=filename, bytes_sent=bytes_sent)

    @classmethod
    def skip(cls, relative_path: str):
        return cls(relative_path, FileOutcome.SKIPPED)

    @classmethod
    def fail(cls, relative_path: str, error: str, filename: Optional[str] = None):
        return cls(relative_path, FileOutcome.FAILED, filename=filename, error=error)

    @classmethod
    def cancel(cls, relative_path: str, filename: Optional[str] = None):
        return cls(relative_path, FileOutcome.CANCELLED, filename=filename)


@dataclass
class BatchResult:
    """Result of a whole batch, with a client-derived status."""
    task_id: str
    target_path: str
    status: TaskStatus
    results: List[FileResult] = field(default_factory=list)

    def _count(self, outcome: FileOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def uploaded_files(self) -> int:
        return self._count(FileOutcome.UPLOADED)

    @property
    def skipped_files(self) -> int:
        return self._count(FileOutcome.SKIPPED)

    @property
    def failed_files(self) -> int:
        return self._count(FileOutcome.FAILED)

    @property
    def success(self) -> bool:
        return self.status == TaskStatus.COMPLETED


@dataclass(frozen=True)
class RetryTicket:
    """What the backend hands back when an upload task is retried."""
    task_id: str
    target_path: str
    pending_files: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, task_id: str, data: Optional[Dict[str, Any]]) -> "RetryTicket":
        data = data or {}
        pending = []
        for entry in data.get("pending_files") or []:
            # Entries are either bare relative paths or {path, size} objects
            if isinstance(entry, dict):
                value = entry.get("path") or entry.get("original") or entry.get("filename")
            else:
                value = entry
            if value:
                pending.append(str(value))
        return cls(task_id=task_id, target_path=data.get("target_path") or "/", pending_files=pending)


def _env_number(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return cast(raw)


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    request_timeout: float = 120.0
    api_timeout: float = 60.0
    max_retries: int = 3
    retry_backoff: float = 1.0
    pause_poll_interval: float = 1.0
    pause_poll_max: float = 5.0
    pause_timeout: Optional[float] = None
    max_parallel_files: int = 1
    default_conflict_strategy: ConflictStrategy = ConflictStrategy.AUTO_RENAME

    def backoff_for(self, attempt: int) -> float:
        """Linear delay before retrying after failed ``attempt`` (0-based)."""
        return (attempt + 1) * self.retry_backoff

    @classmethod
    def from_env(cls) -> "UploadConfig":
        defaults = cls()
        return cls(
            chunk_size=_env_number("FSTASKS_CHUNK_SIZE", int, defaults.chunk_size),
            request_timeout=_env_number("FSTASKS_REQUEST_TIMEOUT", float, defaults.request_timeout),
            max_retries=_env_number("FSTASKS_MAX_RETRIES", int, defaults.max_retries),
            pause_timeout=_env_number("FSTASKS_PAUSE_TIMEOUT", float, defaults.pause_timeout),
            max_parallel_files=_env_number("FSTASKS_MAX_PARALLEL", int, defaults.max_parallel_files),
        )


@dataclass(frozen=True)
class WatchConfig:
    """Polling intervals for the task views."""
    panel_interval: float = 1.0
    manage_interval: float = 2.0
    page_size: int = 20
