"""Console rendering and progress helpers for the fstasks CLI."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
import time

from rich.console import Console, Group
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from .models import BatchResult, FileResult, LocalFile, Task, TaskStatus, TaskType
from .use_cases.task_state import TaskBuckets
from .utils.events import FileProgress


console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING: "dim",
    TaskStatus.RUNNING: "cyan",
    TaskStatus.PAUSED: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.CANCELLED: "magenta",
    TaskStatus.INTERRUPTED: "bold yellow",
}


def _echo(message: str) -> None:
    console.print(message)


def human_size(value: int) -> str:
    size = float(max(value, 0))
    units = ["B", "KB", "MB", "GB", "TB"]
    unit_idx = 0
    while size >= 1024.0 and unit_idx < len(units) - 1:
        size /= 1024.0
        unit_idx += 1
    if unit_idx == 0:
        return f"{int(size)} {units[unit_idx]}"
    return f"{size:.2f} {units[unit_idx]}"


def format_speed(bytes_per_second: float) -> str:
    return f"{human_size(int(bytes_per_second))}/s"


def format_eta(seconds: Optional[int]) -> str:
    if not seconds or seconds <= 0:
        return "--"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def format_finished(value: Optional[str], now: Optional[datetime] = None) -> str:
    """Relative finish time (``just now``, ``5m ago``...) or the date."""
    if not value:
        return ""
    try:
        finished = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if finished.tzinfo is None:
        finished = finished.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    diff = (now - finished).total_seconds()
    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{int(diff // 60)}m ago"
    if diff < 86400:
        return f"{int(diff // 3600)}h ago"
    if diff < 604800:
        return f"{int(diff // 86400)}d ago"
    return finished.strftime("%b %d %H:%M")


def describe_size(task: Task) -> str:
    """Extract tasks count items; everything else shows bytes."""
    if task.type == TaskType.EXTRACT:
        return f"{task.processed_files}/{task.total_files} items"
    label = f"{human_size(task.processed_size)} / {human_size(task.total_size)}"
    if task.total_files > 1:
        label += f" ({task.processed_files}/{task.total_files})"
    return label


def describe_current(task: Task, width: int = 30) -> str:
    if not task.current_file or task.status != TaskStatus.RUNNING:
        return ""
    name = task.current_name or ""
    if len(name) > width:
        name = name[:width] + "..."
    if task.current_phase:
        return f"[{task.current_phase}] {name}"
    return name


def render_configuration_summary(config: Dict[str, Any]) -> None:
    """Render startup configuration summary."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold cyan", justify="right")
    table.add_column(style="white")

    for key, value in config.items():
        rendered = "-" if value is None else str(value)
        table.add_row(key, rendered)

    panel = Panel(
        table,
        title="[bold green]fstasks[/bold green]",
        subtitle="[dim]file console tasks[/dim]",
        border_style="blue",
    )
    console.print(panel)


def _task_rows(table: Table, tasks, title: str) -> None:
    if not tasks:
        return
    table.add_row(f"[bold]{title} ({len(tasks)})[/bold]", "", "", "", "", "", "")
    for task in tasks:
        style = STATUS_STYLES.get(task.status, "white")
        speed = format_speed(task.speed) if task.status == TaskStatus.RUNNING else "--"
        if task.type == TaskType.EXTRACT:
            speed = ""
        detail = describe_current(task) or task.error or format_finished(task.finished_at)
        table.add_row(
            task.id,
            task.type.value,
            f"[{style}]{task.status.value}[/{style}]",
            escape(task.name[:40]),
            f"{task.progress:5.1f}% {describe_size(task)}",
            f"{speed} ETA {format_eta(task.eta_seconds)}" if task.is_active else "",
            escape(detail),
        )


def build_task_table(buckets: TaskBuckets, title: str = "Tasks") -> Table:
    table = Table(title=title, expand=False)
    for column in ("ID", "Type", "Status", "Name", "Progress", "Speed", "Detail"):
        if column == "Name":
            table.add_column(column, no_wrap=True, overflow="ellipsis", min_width=12)
        else:
            table.add_column(column, no_wrap=column in ("ID", "Type", "Status"))
    _task_rows(table, buckets.active, "Running")
    _task_rows(table, buckets.interrupted, "Interrupted")
    _task_rows(table, buckets.terminal, "Finished")
    if not table.rows:
        table.add_row("-", "", "[dim]no tasks[/dim]", "", "", "", "")
    return table


def render_task_table(buckets: TaskBuckets, title: str = "Tasks") -> None:
    console.print(build_task_table(buckets, title))


class TaskWatchView:
    """Live task table refreshed on every store update."""

    def __init__(self, title: str = "Tasks"):
        self._title = title
        self._live: Optional[Live] = None

    def start(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            build_task_table(TaskBuckets(), self._title),
            console=console,
            refresh_per_second=4,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def on_update(self, store: Any) -> None:
        if self._live is None:
            self.start()
        self._live.update(build_task_table(store.buckets, self._title))


class BatchUploadProgressDisplay:
    """Event-based console display for a batch upload process."""

    def __init__(self, total_files: int = 0):
        self._active_tasks: Dict[str, TaskID] = {}
        self._stats = {"total_files": total_files, "uploaded": 0, "failed": 0, "skipped": 0}
        self._overall_task_id: Optional[TaskID] = None
        self._live: Optional[Live] = None
        self._meta_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold cyan]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=28),
            TextColumn("{task.completed}/{task.total}"),
            TextColumn("[dim]{task.fields[detail]}", justify="left"),
            expand=False,
            console=console,
        )
        self._file_progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold green]{task.fields[label]}", justify="left"),
            BarColumn(bar_width=42),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            expand=False,
            console=console,
        )

    def _emit_timeline(
        self,
        status: str,
        name: str,
        size_bytes: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        stamp = time.strftime("%H:%M:%S")
        size_label = f" {human_size(size_bytes)}" if size_bytes and size_bytes > 0 else ""
        error_label = f" cause={error}" if error else ""
        palette = {"DONE": "green", "FAIL": "red", "SKIP": "yellow", "INFO": "blue"}
        color = palette.get(status, "white")
        _echo(f"[dim]{stamp}[/dim] [{color}]{status:<4}[/{color}] {name}{size_label}{error_label}")

    def _start_live(self) -> None:
        if self._live is not None:
            return
        self._live = Live(
            Group(self._meta_progress, self._file_progress),
            console=console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        self._overall_task_id = self._meta_progress.add_task(
            "overall",
            label="Overall",
            total=max(self._stats["total_files"], 1),
            completed=0,
            detail="uploaded=0 failed=0 skipped=0",
        )

    def _stop_live(self) -> None:
        if self._live is None:
            return
        self._live.stop()
        self._live = None

    def _update_overall(self) -> None:
        if self._overall_task_id is None:
            return
        uploaded = self._stats["uploaded"]
        failed = self._stats["failed"]
        skipped = self._stats["skipped"]
        completed = uploaded + failed + skipped
        self._meta_progress.update(
            self._overall_task_id,
            completed=completed,
            total=max(self._stats["total_files"], completed, 1),
            detail=f"uploaded={uploaded} failed={failed} skipped={skipped}",
        )

    def on_file_start(self, local: LocalFile, name: str) -> None:
        self._start_live()
        self._active_tasks[local.relative_path] = self._file_progress.add_task(
            "upload",
            label=name[:60],
            total=max(local.size, 1),
        )

    def on_file_progress(self, progress: FileProgress) -> None:
        task_id = self._active_tasks.get(progress.relative_path)
        if task_id is None:
            return
        self._file_progress.update(
            task_id,
            completed=progress.bytes_sent,
            total=max(progress.total_bytes, 1),
        )

    def _finish_file(self, result: FileResult) -> None:
        task_id = self._active_tasks.pop(result.relative_path, None)
        if task_id is not None:
            self._file_progress.remove_task(task_id)

    def on_file_complete(self, result: FileResult) -> None:
        self._finish_file(result)
        self._stats["uploaded"] += 1
        self._update_overall()
        self._emit_timeline("DONE", result.filename or result.relative_path, size_bytes=result.bytes_sent)

    def on_file_skip(self, result: FileResult) -> None:
        self._start_live()
        self._stats["skipped"] += 1
        self._update_overall()
        self._emit_timeline("SKIP", result.relative_path)

    def on_file_fail(self, result: FileResult) -> None:
        self._finish_file(result)
        self._stats["failed"] += 1
        self._update_overall()
        self._emit_timeline("FAIL", result.filename or result.relative_path, error=result.error)

    def on_finish(self, result: BatchResult) -> None:
        self._stop_live()
        style = "green" if result.success else "red"
        _echo(
            f"[bold]Finished[/bold] task={result.task_id} status=[{style}]{result.status.value}[/{style}] "
            f"uploaded={result.uploaded_files} skipped={result.skipped_files} failed={result.failed_files}"
        )

    def close(self) -> None:
        self._stop_live()
