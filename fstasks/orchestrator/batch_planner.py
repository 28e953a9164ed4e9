"""Batch planning - registers a batch task and resolves naming conflicts."""
import logging
from typing import List, Optional, Sequence

from ..errors import APIError, BatchValidationError, TransportError
from ..models import BatchPlan, ConflictStrategy, LocalFile, ResolvedFile
from ..protocols import IFileConsoleAPI

logger = logging.getLogger(__name__)


def normalize_target(path: Optional[str]) -> str:
    """``None``/``""`` -> ``/``; otherwise a single leading slash, no trailing one."""
    value = (path or "").strip()
    if value in {"", "/"}:
        return "/"
    return "/" + value.strip("/")


class BatchPlanner:
    """
    Creates the backend batch task in one round trip.

    Conflicts are resolved server-side so two clients uploading into the
    same directory never pick the same destination name.
    """

    def __init__(self, api: IFileConsoleAPI):
        self._api = api

    async def plan(
        self,
        target_path: str,
        files: Sequence[LocalFile],
        conflict_strategy: ConflictStrategy = ConflictStrategy.AUTO_RENAME,
    ) -> BatchPlan:
        """
        Register a batch.

        Raises:
            BatchValidationError: request failed or was rejected; nothing was created
        """
        target = normalize_target(target_path)
        if not files:
            raise BatchValidationError("no files to upload")

        payload = [{"path": f.relative_path, "size": f.size} for f in files]
        try:
            data = await self._api.create_upload_batch(target, payload, conflict_strategy)
        except (APIError, TransportError) as e:
            raise BatchValidationError(f"could not create upload task: {e}") from e

        task_id = data.get("taskId")
        if not task_id:
            raise BatchValidationError("backend did not return a task id")

        resolved: List[ResolvedFile] = []
        for item in data.get("files") or []:
            try:
                resolved.append(ResolvedFile.from_dict(item))
            except (KeyError, TypeError) as e:
                raise BatchValidationError(f"malformed file resolution {item!r}") from e

        skipped = sum(1 for r in resolved if not r.should_transfer)
        logger.info(
            f"[batch] Task {task_id}: {len(files)} files -> {target} "
            f"({conflict_strategy.value}, {skipped} skipped)"
        )
        return BatchPlan(task_id=str(task_id), target_path=target, files=resolved)


def upload_name(plan: BatchPlan, relative_path: str) -> Optional[str]:
    """
    Name to upload ``relative_path`` under, or None if it must not be sent.

    The resolved path is made relative to the batch target so folder
    structure survives a rename. Files missing from the resolution list keep
    their original relative path.
    """
    resolution = plan.resolution_for(relative_path)
    if resolution is None:
        return relative_path
    if not resolution.should_transfer:
        return None

    resolved = resolution.resolved.replace("\\", "/")
    prefix = plan.target_path.rstrip("/") + "/"
    if prefix != "/" and resolved.startswith(prefix):
        resolved = resolved[len(prefix):]
    return resolved.lstrip("/") or relative_path
