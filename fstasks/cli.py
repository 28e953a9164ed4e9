"""Command line interface for fstasks."""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from rich.logging import RichHandler

from .cli_progress import (
    BatchUploadProgressDisplay,
    TaskWatchView,
    human_size,
    render_configuration_summary,
    render_task_table,
)
from .errors import FSTasksError
from .models import BatchResult, ConflictStrategy, TaskStatus, TaskType, UploadConfig, WatchConfig
from .orchestrator import BatchUploadProcess, TaskClient
from .orchestrator.batch_planner import normalize_target
from .services.task_controller import TaskController
from .services.task_store import TaskStore


DEFAULT_LOG_DIR = Path.home() / ".cache" / "fstasks" / "logs"
TASK_COMMANDS = ("pause", "resume", "cancel", "retry", "restart", "remove")

_LOG_PATHS: Tuple[Optional[str], Optional[str]] = (None, None)


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _get_log_paths() -> Tuple[Optional[str], Optional[str]]:
    """Run log and error log written by the last ``_setup_logging`` call."""
    return _LOG_PATHS


def _log_dir() -> Path:
    configured = os.getenv("FSTASKS_LOG_DIR")
    return Path(configured).expanduser() if configured else DEFAULT_LOG_DIR


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Console output is silent unless --debug or --log-level is provided; the
    run log and error log files are always written.
    Returns a string describing effective mode.
    """
    global _LOG_PATHS

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    logging.disable(logging.NOTSET)

    file_level = logging.DEBUG if debug else logging.INFO
    log_dir = _log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        run_log = log_dir / "fstasks.log"
        error_log = log_dir / "fstasks-error.log"
        file_formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

        run_handler = logging.FileHandler(run_log, encoding="utf-8")
        run_handler.setLevel(file_level)
        run_handler.setFormatter(file_formatter)
        root_logger.addHandler(run_handler)

        error_handler = logging.FileHandler(error_log, encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(file_formatter)
        root_logger.addHandler(error_handler)
        _LOG_PATHS = (str(run_log), str(error_log))
    except OSError as exc:
        print(f"WARNING: file logging disabled ({exc})", file=sys.stderr)
        _LOG_PATHS = (None, None)

    if silent or (not debug and not log_level):
        root_logger.setLevel(file_level)
        return "silent"

    if debug:
        level = logging.DEBUG
    elif log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        env_level = os.getenv("LOG_LEVEL")
        level = getattr(logging, (env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=True,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    root_logger.addHandler(handler)
    root_logger.setLevel(min(level, file_level))
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _build_upload_config(args: argparse.Namespace) -> UploadConfig:
    try:
        config = UploadConfig.from_env()
    except ValueError as exc:
        raise CLIError(f"invalid FSTASKS_* setting: {exc}") from exc

    overrides = {}
    if getattr(args, "chunk_size", None):
        overrides["chunk_size"] = args.chunk_size * 1024 * 1024
    if getattr(args, "parallel", None):
        overrides["max_parallel_files"] = args.parallel
    if getattr(args, "conflict", None):
        overrides["default_conflict_strategy"] = ConflictStrategy(args.conflict)
    if overrides.get("chunk_size", 1) <= 0 or overrides.get("max_parallel_files", 1) <= 0:
        raise CLIError("--chunk-size and --parallel must be positive")
    return replace(config, **overrides)


def _attach_display(process: BatchUploadProcess, total_files: int) -> BatchUploadProgressDisplay:
    display = BatchUploadProgressDisplay(total_files=total_files)
    process.on_file_start(display.on_file_start)
    process.on_file_progress(display.on_file_progress)
    process.on_file_complete(display.on_file_complete)
    process.on_file_skip(display.on_file_skip)
    process.on_file_fail(display.on_file_fail)
    process.on_finish(display.on_finish)
    return display


async def _run_process(client: TaskClient, process: BatchUploadProcess, total_files: int) -> BatchResult:
    """Run a batch; on interruption cancel it locally and on the backend."""
    display = _attach_display(process, total_files)
    try:
        return await process.wait()
    except asyncio.CancelledError:
        process.cancel()
        await client.controller.cancel(process.task_id, TaskType.UPLOAD)
        raise
    finally:
        display.close()


def _exit_code(result: Optional[BatchResult]) -> int:
    if result is None:
        return 0
    for failed in (r for r in result.results if r.error):
        print(f"ERROR: {failed.relative_path}: {failed.error}", file=sys.stderr)
    if result.status == TaskStatus.CANCELLED:
        return 130
    return 0 if result.success else 1


async def _run_upload(
    api_url: str,
    token: Optional[str],
    sources: List[Path],
    target: str,
    config: UploadConfig,
) -> int:
    async with TaskClient(api_url, config=config, token=token) as client:
        try:
            process = await client.prepare_upload(sources, target)
        except FileNotFoundError as exc:
            raise CLIError(f"source does not exist: {exc}") from exc
        print(f"Uploading to {process.plan.target_path} (task {process.task_id})...")
        result = await _run_process(client, process, len(process.files))
        return _exit_code(result)


async def _run_continue(
    api_url: str,
    token: Optional[str],
    task_id: str,
    source: Path,
    config: UploadConfig,
) -> int:
    async with TaskClient(api_url, config=config, token=token) as client:
        await _refresh_quietly(client.store)
        process = await client.prepare_resume(task_id, source)
        if process is None:
            print(f"Task {task_id}: nothing left to upload")
            return 0
        print(f"Continuing task {task_id} as {process.task_id}...")
        result = await _run_process(client, process, len(process.files))
        return _exit_code(result)


async def _refresh_quietly(store: TaskStore) -> None:
    """Prime the store so controller guards see current statuses."""
    try:
        await store.refresh()
    except FSTasksError as exc:
        logging.getLogger(__name__).warning(f"Could not load tasks: {exc}")


async def _run_list(api_url: str, token: Optional[str], args: argparse.Namespace) -> int:
    async with TaskClient(api_url, token=token) as client:
        if args.manage:
            store = TaskStore(client.api, mode="manage", page_size=args.page_size)
            store.set_filters(args.type, args.status)
            store.page = args.page
        else:
            store = client.store
        await store.refresh()
        title = "Tasks"
        if store.mode == "manage":
            title = f"Tasks (page {store.page}/{max(store.total_pages, 1)}, {store.total} total)"
        render_task_table(store.buckets, title)
        return 0


async def _run_watch(api_url: str, token: Optional[str], args: argparse.Namespace) -> int:
    async with TaskClient(api_url, token=token) as client:
        poller = client.watch("manage" if args.manage else "panel")
        view = TaskWatchView()
        poller.store.on_update(view.on_update)
        try:
            async with poller:
                while True:
                    await asyncio.sleep(0.2)
                    if args.until_idle and poller.refreshed and poller.store.last_error is None \
                            and not poller.store.has_active:
                        return 0
        finally:
            view.stop()


async def _run_task_command(api_url: str, token: Optional[str], args: argparse.Namespace) -> int:
    async with TaskClient(api_url, token=token) as client:
        if args.command == "clear" and args.all:
            store = TaskStore(client.api, mode="manage")
            await _refresh_quietly(store)
            controller = TaskController(client.api, store, client.registry)
            ok = await controller.clear_all()
        elif args.command == "clear":
            await _refresh_quietly(client.store)
            ok = await client.controller.clear()
        else:
            await _refresh_quietly(client.store)
            controller = client.controller
            if args.command == "retry":
                ticket = await controller.retry(args.task_id)
                if ticket is not None:
                    print(
                        f"Task {args.task_id}: {len(ticket.pending_files)} files pending in "
                        f"{ticket.target_path}; run 'fstasks continue {args.task_id} SOURCE'"
                    )
                ok = True
            else:
                ok = await getattr(controller, args.command)(args.task_id)

        label = f"{args.command} {getattr(args, 'task_id', '') or ''}".strip()
        if not ok:
            print(f"ERROR: {label} was not applied", file=sys.stderr)
            return 1
        print(f"OK: {label}")
        return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fstasks",
        description="Upload files to the file console and manage its background tasks.",
    )
    parser.add_argument(
        "--api-url",
        default=None,
        help="File console base URL (default from FSTASKS_API_URL)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Bearer token (default from FSTASKS_TOKEN)",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument("--version", action="version", version="fstasks 0.3.0")

    sub = parser.add_subparsers(dest="command")

    upload = sub.add_parser("upload", help="Upload files or folders")
    upload.add_argument("sources", nargs="+", type=Path, help="Source files or folders")
    upload.add_argument("-t", "--to", dest="target", default="/", help="Destination folder (default /)")
    upload.add_argument(
        "--conflict",
        choices=[s.value for s in ConflictStrategy],
        default=None,
        help="What to do when a name already exists (default auto_rename)",
    )
    upload.add_argument("--chunk-size", type=int, default=None, help="Chunk size in MiB")
    upload.add_argument("--parallel", type=int, default=None, help="Files uploaded at once")

    cont = sub.add_parser("continue", help="Continue an interrupted upload")
    cont.add_argument("task_id")
    cont.add_argument("source", type=Path, help="Local folder or file the upload came from")
    cont.add_argument("--conflict", choices=[s.value for s in ConflictStrategy], default=None)

    listing = sub.add_parser("list", help="Show tasks once")
    listing.add_argument("--manage", action="store_true", help="Use the paged listing")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--page-size", type=int, default=WatchConfig().page_size)
    listing.add_argument("--type", choices=[t.value for t in TaskType], default=None)
    listing.add_argument("--status", default=None)

    watch = sub.add_parser("watch", help="Follow tasks live")
    watch.add_argument("--manage", action="store_true", help="Poll every 2s while tasks are active")
    watch.add_argument("--until-idle", action="store_true", help="Exit once no task is active")

    for name in TASK_COMMANDS:
        command = sub.add_parser(name, help=f"{name.capitalize()} a task")
        command.add_argument("task_id")

    clear = sub.add_parser("clear", help="Clear finished tasks")
    clear.add_argument("--all", action="store_true", help="Clear tasks of every user (admin)")
    return parser


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return 1

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    if args.command is None:
        parser.print_help()
        return 0

    api_url = args.api_url or os.getenv("FSTASKS_API_URL")
    if not api_url:
        print("ERROR: FSTASKS_API_URL environment variable is not set", file=sys.stderr)
        return 1
    token = args.token or os.getenv("FSTASKS_TOKEN")

    try:
        if args.command in ("upload", "continue"):
            config = _build_upload_config(args)
            sources = args.sources if args.command == "upload" else [args.source]
            sources = [Path(s).expanduser() for s in sources]
            for source in sources:
                if not source.exists():
                    raise CLIError(f"source does not exist: {source}")
            run_log, _ = _get_log_paths()
            render_configuration_summary(
                {
                    "Command": args.command,
                    "Sources": ", ".join(str(s) for s in sources),
                    "Target": normalize_target(args.target) if args.command == "upload" else "(from task)",
                    "API": api_url,
                    "Auth": "token" if token else "-",
                    "Conflict": config.default_conflict_strategy.value,
                    "Chunk Size": human_size(config.chunk_size),
                    "Parallel Files": config.max_parallel_files,
                    "Env File": str(used_env_file) if used_env_file else "-",
                    "Logging": effective_log_mode,
                    "Run Log": run_log or "-",
                }
            )
            if args.command == "upload":
                coro = _run_upload(api_url, token, sources, args.target, config)
            else:
                coro = _run_continue(api_url, token, args.task_id, sources[0], config)
        elif args.command == "list":
            coro = _run_list(api_url, token, args)
        elif args.command == "watch":
            coro = _run_watch(api_url, token, args)
        else:
            coro = _run_task_command(api_url, token, args)
        return asyncio.run(coro)
    except (CLIError, FSTasksError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return 130


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
