"""
Portal REST API 客户端（外部系统连接器）。

约定：
- 这里只做 HTTP 调用 + 错误处理 + schema 校验，不做缓存、不做业务决策
- 出错直接抛 `ApiError`（不要吞），message 优先取响应体里的 `message`
- 网络层异常（httpx.HTTPError）记日志后原样抛出
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from portal.api.schemas import BulkUpdateResult
from portal.api.schemas import CreateProjectResponse
from portal.api.schemas import DashboardStats
from portal.api.schemas import FileDownload
from portal.api.schemas import FilePreview
from portal.api.schemas import FileStatistics
from portal.api.schemas import NotificationPage
from portal.api.schemas import NotificationPreferences
from portal.api.schemas import Pagination
from portal.api.schemas import Project
from portal.api.schemas import ProjectDraft
from portal.api.schemas import ProjectFile
from portal.api.schemas import ProjectFilesResponse
from portal.api.schemas import ProjectListResponse
from portal.api.schemas import ProjectPage
from portal.api.schemas import UploadFilesResponse
from portal.api.schemas import User
from portal.api.schemas import UserPage
from portal.errors import ApiError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]
SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class LocalFile:
    """待上传的本地文件（内容已读入内存）。"""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


def _unwrap(body: Any) -> Any:
    """服务端部分接口用 `{success, message, data: {...}}` 包一层，这里统一拆掉。"""
    if isinstance(body, dict) and isinstance(body.get("data"), dict):
        return body["data"]
    return body


def _normalize_pagination(raw: Any, page: int, limit: int) -> Pagination:
    """服务端分页字段不统一（currentPage/page），缺失时回落到请求参数。"""
    if not isinstance(raw, dict):
        return Pagination(page=page, limit=limit)
    return Pagination(
        page=int(raw.get("currentPage") or raw.get("page") or page),
        limit=int(raw.get("limit") or limit),
        total=int(raw.get("total") or 0),
        totalPages=int(raw.get("totalPages") or 0),
    )


async def _iter_with_progress(
    stream: httpx.AsyncByteStream,
    total_bytes: int,
    on_progress: ProgressCallback,
) -> AsyncIterator[bytes]:
    """边发送请求体边上报百分比（只在百分比变大时回调，保证单调不减）。"""
    sent = 0
    last_percent = -1
    async for chunk in stream:
        sent += len(chunk)
        percent = 100 if total_bytes <= 0 else min(100, round(sent * 100 / total_bytes))
        if percent > last_percent:
            last_percent = percent
            on_progress(percent)
        yield chunk


class PortalApiClient:
    """项目管理平台 REST API client。"""

    def __init__(self, base_url: str, http_client: httpx.AsyncClient) -> None:
        """
        - base_url: API 根地址（例如 http://localhost:3000/api，不包含末尾 /）
        - http_client: 复用的 httpx.AsyncClient
        """
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    async def _request(
        self,
        method: str,
        path: str,
        default_error: str,
        *,
        params: Mapping[str, str] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._http_client.request(method, self._url(path), params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error(f"HTTP error on {method} {path}: {exc}")
            raise
        return self._parse(response, default_error)

    def _parse(self, response: httpx.Response, default_error: str) -> Any:
        if response.status_code >= 400:
            message = default_error
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and isinstance(body.get("message"), str) and body["message"]:
                message = body["message"]
            logger.warning(f"API error {response.status_code} on {response.request.url}: {message}")
            raise ApiError(status_code=response.status_code, message=message)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError(status_code=response.status_code, message=f"{default_error}: invalid JSON") from exc

    @staticmethod
    def _validate(schema: type[SchemaT], payload: Any, default_error: str) -> SchemaT:
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            logger.error(f"Unexpected response shape for {schema.__name__}: {exc}")
            raise ApiError(status_code=502, message=f"{default_error}: unexpected response") from exc

    # ---- project files ----

    async def get_project_files(self, project_id: str) -> list[ProjectFile]:
        """GET /projects/{id}/files"""
        error = "Failed to fetch project files"
        body = await self._request("GET", f"/projects/{project_id}/files", error)
        return self._validate(ProjectFilesResponse, _unwrap(body), error).files

    async def upload_project_files(
        self,
        project_id: str,
        files: Sequence[LocalFile],
        on_progress: ProgressCallback | None = None,
    ) -> UploadFilesResponse:
        """
        POST /projects/{id}/files（multipart，字段名 `files`）。

        on_progress 会在请求体发送过程中被多次调用，百分比单调不减。
        """
        if not files:
            raise ValueError("files must not be empty")
        error = "Upload failed"
        multipart = [("files", (f.filename, f.content, f.content_type)) for f in files]
        request = self._http_client.build_request("POST", self._url(f"/projects/{project_id}/files"), files=multipart)
        if on_progress is not None:
            total_bytes = int(request.headers.get("Content-Length", "0"))
            request = httpx.Request(
                "POST",
                request.url,
                headers=request.headers,
                content=_iter_with_progress(request.stream, total_bytes, on_progress),  # type: ignore[arg-type]
            )
        try:
            response = await self._http_client.send(request)
        except httpx.HTTPError as exc:
            logger.error(f"HTTP error uploading files to project {project_id}: {exc}")
            raise
        body = self._parse(response, error)
        return self._validate(UploadFilesResponse, _unwrap(body), error)

    async def delete_project_file(self, project_id: str, file_id: str) -> None:
        await self._request("DELETE", f"/projects/{project_id}/files/{file_id}", "Failed to delete file")

    async def get_file_download(self, project_id: str, file_id: str) -> FileDownload:
        error = "Failed to download file"
        body = await self._request("GET", f"/projects/{project_id}/files/{file_id}/download", error)
        return self._validate(FileDownload, _unwrap(body), error)

    async def get_file_preview(self, project_id: str, file_id: str) -> FilePreview:
        error = "Failed to preview file"
        body = await self._request("GET", f"/projects/{project_id}/files/{file_id}/preview", error)
        return self._validate(FilePreview, _unwrap(body), error)

    # ---- admin ----

    async def get_file_statistics(self) -> FileStatistics:
        error = "Failed to fetch file statistics"
        body = _unwrap(await self._request("GET", "/projects/admin/file-statistics", error))
        # 兼容两种形态：{statistics: {...}} 或直接平铺
        payload = body.get("statistics", body) if isinstance(body, dict) else body
        return self._validate(FileStatistics, payload, error)

    async def get_dashboard_stats(self) -> DashboardStats:
        error = "Failed to fetch dashboard statistics"
        body = _unwrap(await self._request("GET", "/admin/dashboard/stats", error))
        payload = body.get("stats") if isinstance(body, dict) else None
        return self._validate(DashboardStats, payload, error)

    async def list_projects(self, page: int, limit: int, filters: Mapping[str, str] | None = None) -> ProjectPage:
        """GET /projects/admin?page=&limit=&...filters"""
        error = "Failed to fetch projects"
        params = {"page": str(page), "limit": str(limit), **(filters or {})}
        body = _unwrap(await self._request("GET", "/projects/admin", error, params=params))
        if not isinstance(body, dict) or not isinstance(body.get("projects"), list):
            raise ApiError(status_code=502, message=f"{error}: unexpected response")
        items = [self._validate(Project, item, error) for item in body["projects"]]
        return ProjectPage(items=items, pagination=_normalize_pagination(body.get("pagination"), page, limit))

    async def list_users(self, page: int, limit: int, filters: Mapping[str, str] | None = None) -> UserPage:
        error = "Failed to fetch users"
        params = {"page": str(page), "limit": str(limit), **(filters or {})}
        body = _unwrap(await self._request("GET", "/admin/users", error, params=params))
        if not isinstance(body, dict) or not isinstance(body.get("users"), list):
            raise ApiError(status_code=502, message=f"{error}: unexpected response")
        items = [self._validate(User, item, error) for item in body["users"]]
        return UserPage(items=items, pagination=_normalize_pagination(body.get("pagination"), page, limit))

    async def update_project_status(self, project_id: str, status: str, review_comment: str = "") -> None:
        await self._request(
            "PUT",
            f"/projects/{project_id}/status",
            "Failed to update project status",
            json={"status": status, "reviewComment": review_comment},
        )

    async def delete_project(self, project_id: str) -> None:
        await self._request("DELETE", f"/projects/{project_id}", "Failed to delete project")

    async def bulk_update_projects(
        self,
        project_ids: Sequence[str],
        action: str,
        status: str | None = None,
        review_comment: str = "",
    ) -> BulkUpdateResult:
        """PUT /admin/projects/bulk（action: updateStatus / delete）。"""
        error = "Failed to perform bulk operation"
        payload: dict[str, Any] = {"projectIds": list(project_ids), "action": action, "reviewComment": review_comment}
        if status is not None:
            payload["status"] = status
        body = await self._request("PUT", "/admin/projects/bulk", error, json=payload)
        return self._validate(BulkUpdateResult, body, error)

    # ---- user projects ----

    async def list_my_projects(self) -> list[Project]:
        """GET /user/projects（当前用户自己的项目）"""
        error = "Failed to fetch projects"
        body = await self._request("GET", "/user/projects", error)
        return self._validate(ProjectListResponse, _unwrap(body), error).projects

    async def create_project(self, draft: ProjectDraft) -> Project:
        error = "Failed to create project"
        body = await self._request("POST", "/user/projects", error, json=draft.model_dump(exclude_none=True))
        return self._validate(CreateProjectResponse, _unwrap(body), error).project

    async def delete_my_project(self, project_id: str) -> None:
        await self._request("DELETE", f"/user/projects/{project_id}", "Failed to delete project")

    async def search_my_projects(
        self, page: int, limit: int, filters: Mapping[str, str] | None = None
    ) -> ProjectPage:
        """GET /user/projects/search?page=&limit=&q=&status=..."""
        error = "Failed to search projects"
        params = {"page": str(page), "limit": str(limit), **(filters or {})}
        body = _unwrap(await self._request("GET", "/user/projects/search", error, params=params))
        if not isinstance(body, dict) or not isinstance(body.get("projects"), list):
            raise ApiError(status_code=502, message=f"{error}: unexpected response")
        items = [self._validate(Project, item, error) for item in body["projects"]]
        return ProjectPage(items=items, pagination=_normalize_pagination(body.get("pagination"), page, limit))

    # ---- notifications ----

    async def list_notifications(
        self,
        page: int,
        limit: int,
        unread_only: bool = False,
        category: str = "",
    ) -> NotificationPage:
        error = "Failed to load notifications"
        params = {"page": str(page), "limit": str(limit)}
        if unread_only:
            params["unreadOnly"] = "true"
        if category:
            params["category"] = category
        body = await self._request("GET", "/notifications", error, params=params)
        return self._validate(NotificationPage, _unwrap(body), error)

    async def mark_notification_read(self, notification_id: str) -> None:
        await self._request(
            "PUT", f"/notifications/{notification_id}/read", "Failed to mark notification as read"
        )

    async def mark_all_notifications_read(self) -> int:
        """返回被标记为已读的条数。"""
        body = _unwrap(
            await self._request("PUT", "/notifications/mark-all-read", "Failed to mark all notifications as read")
        )
        count = body.get("count") if isinstance(body, dict) else None
        return int(count) if isinstance(count, int) else 0

    async def delete_notification(self, notification_id: str) -> None:
        await self._request("DELETE", f"/notifications/{notification_id}", "Failed to delete notification")

    async def get_notification_preferences(self) -> NotificationPreferences:
        error = "Failed to load preferences"
        body = _unwrap(await self._request("GET", "/notifications/preferences", error))
        payload = body.get("preferences") if isinstance(body, dict) else None
        return self._validate(NotificationPreferences, payload, error)

    async def update_notification_preferences(self, preferences: NotificationPreferences) -> NotificationPreferences:
        error = "Failed to update preferences"
        body = _unwrap(
            await self._request(
                "PUT",
                "/notifications/preferences",
                error,
                json={"preferences": preferences.model_dump()},
            )
        )
        payload = body.get("preferences") if isinstance(body, dict) else None
        return self._validate(NotificationPreferences, payload, error)
