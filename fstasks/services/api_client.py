"""HTTP adapter for the file-console upload and task endpoints."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import APIError, TransportError
from ..models import ConflictStrategy, Task, TaskPage

logger = logging.getLogger(__name__)

SUCCESS_CODE = 200
PAUSED_CODE = 498
CANCELLED_CODE = 499

TASK_ACTIONS = ("pause", "resume", "cancel", "retry", "restart", "remove", "clear", "clear_all")


class FileConsoleAPI:
    """
    HTTP client adapter for the backend.

    Implements IFileConsoleAPI. Responses are ``{code, message, data}``
    envelopes; reads are retried, writes are sent once.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._token = token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        max_retries: int = 1,
        **kwargs,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("FileConsoleAPI not initialized. Use 'async with' context.")

        last_exception: Optional[Exception] = None

        for attempt in range(max_retries):
            try:
                response = await self._client.request(method, endpoint, **kwargs)

                if response.status_code >= 500 and attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue

                if response.status_code >= 400:
                    try:
                        error_detail = response.json()
                    except ValueError:
                        error_detail = response.text
                    raise APIError(
                        f"API error {response.status_code} on {method} {endpoint}: {error_detail}",
                        code=response.status_code,
                    )

                return response
            except (httpx.RequestError, httpx.TimeoutException) as exc:
                last_exception = exc
                if attempt < max_retries - 1:
                    await asyncio.sleep(0.5 * (attempt + 1))
                    continue
                raise TransportError(f"{method} {endpoint} failed: {exc}") from exc

        if last_exception:
            raise TransportError(f"{method} {endpoint} failed: {last_exception}") from last_exception
        raise TransportError(f"Failed to {method} {endpoint} after {max_retries} attempts")

    @staticmethod
    def _envelope(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise APIError(f"invalid JSON from {response.request.url}: {exc}") from exc
        if not isinstance(body, dict):
            raise APIError(f"unexpected response from {response.request.url}: {body!r}")
        return body

    def _data(self, response: httpx.Response) -> Any:
        body = self._envelope(response)
        code = body.get("code", SUCCESS_CODE)
        if code != SUCCESS_CODE:
            raise APIError(body.get("message") or f"request failed with code {code}", code=code)
        return body.get("data")

    async def create_upload_batch(
        self,
        target_path: str,
        files: List[Dict[str, Any]],
        conflict_strategy: ConflictStrategy,
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            "/api/fs/upload/batch",
            json={
                "target_path": target_path,
                "files": files,
                "conflict_strategy": conflict_strategy.value,
            },
        )
        return self._data(response) or {}

    async def upload_status(self, path: str, filename: str, total_chunks: int) -> List[int]:
        response = await self._request(
            "POST",
            "/api/fs/upload/status",
            max_retries=3,
            json={"path": path, "filename": filename, "total_chunks": total_chunks},
        )
        data = self._data(response) or {}
        return [int(i) for i in data.get("uploadedChunks") or []]

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
        """
        Send one multipart upload request.

        Returns the raw envelope so the caller can react to the paused and
        cancelled sentinel codes.
        """
        form = {"path": path, "filename": filename, "totalSize": str(total_size)}
        if chunk_index is not None:
            form["chunkIndex"] = str(chunk_index)
            form["totalChunks"] = str(total_chunks)
        if task_id:
            form["taskId"] = task_id

        kwargs: Dict[str, Any] = {
            "data": form,
            "files": {"file": (filename.rsplit("/", 1)[-1] or "file", content, "application/octet-stream")},
        }
        if timeout is not None:
            kwargs["timeout"] = timeout

        response = await self._request("POST", "/api/fs/upload", **kwargs)
        return self._envelope(response)

    async def list_tasks(self) -> List[Task]:
        response = await self._request("GET", "/api/tasks", max_retries=3)
        return [Task.from_dict(item) for item in self._data(response) or []]

    async def list_tasks_paged(
        self,
        page: int = 1,
        page_size: int = 20,
        task_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> TaskPage:
        payload: Dict[str, Any] = {"page": page, "page_size": page_size}
        if task_type:
            payload["task_type"] = task_type
        if status:
            payload["status"] = status

        response = await self._request("POST", "/api/tasks/list", max_retries=3, json=payload)
        data = self._data(response) or {}
        return TaskPage(
            tasks=[Task.from_dict(item) for item in data.get("tasks") or []],
            total=int(data.get("total") or 0),
            total_pages=int(data.get("total_pages") or 0),
            is_admin=bool(data.get("is_admin", False)),
            page=page,
            page_size=page_size,
        )

    async def task_command(self, action: str, task_id: Optional[str] = None) -> Dict[str, Any]:
        if action not in TASK_ACTIONS:
            raise ValueError(f"Unknown task action: {action}")
        kwargs = {"json": {"task_id": task_id}} if task_id is not None else {}
        response = await self._request("POST", f"/api/tasks/{action}", **kwargs)
        return self._data(response) or {}
