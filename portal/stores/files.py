"""
项目附件 store（文件列表缓存 + 上传进度 + 预览）。

- 文件列表按 project_id 缓存，默认 TTL 2 分钟
- 上传：`begin_upload` 立即返回 task id，进度写进 `UploadTracker`（轮询 `get_upload_status`）
- 写操作后一律 patch-or-invalidate，保证缓存不会和服务端不一致
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

from pydantic import TypeAdapter

from portal.api.client import LocalFile
from portal.api.client import PortalApiClient
from portal.api.schemas import FileDownload
from portal.api.schemas import FilePreview
from portal.api.schemas import ProjectFile
from portal.api.schemas import UploadFilesResponse
from portal.cache.entry import CacheEntry
from portal.cache.resource_cache import Clock
from portal.cache.snapshot import SnapshotStore
from portal.cache.snapshot import dump_snapshot
from portal.cache.snapshot import load_snapshot
from portal.errors import UploadError
from portal.errors import error_message
from portal.stores.base import ResourceStore
from portal.uploads.tracker import UploadTask
from portal.uploads.tracker import UploadTracker

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "file-store"

_FILES_ADAPTER: TypeAdapter[list[ProjectFile]] = TypeAdapter(list[ProjectFile])


def _consume_upload_result(task: asyncio.Task[UploadFilesResponse]) -> None:
    """失败已经写进 UploadTracker；这里取走异常，只轮询不 await 的调用方不会触发 asyncio 的告警。"""
    if not task.cancelled():
        task.exception()


@dataclass(frozen=True)
class UploadHandle:
    """`begin_upload` 的返回值：task_id 用于查进度，task 用于等待结果。"""

    task_id: str
    task: asyncio.Task[UploadFilesResponse]


@dataclass
class PreviewState:
    file: FilePreview | None = None
    loading: bool = False
    error: str | None = None


class FileStore:
    """项目附件的 store façade（每个 UI 会话持有一个实例）。"""

    def __init__(
        self,
        api: PortalApiClient,
        project_files_ttl_seconds: float = 120.0,
        upload_grace_seconds: float = 3.0,
        clock: Clock = time.time,
    ) -> None:
        self._api = api
        self._files: ResourceStore[str, list[ProjectFile]] = ResourceStore(
            loader=api.get_project_files,
            ttl_seconds=project_files_ttl_seconds,
            clock=clock,
            name="project-files",
        )
        self._uploads = UploadTracker(grace_seconds=upload_grace_seconds, clock=clock)
        self.preview = PreviewState()

    @property
    def uploads(self) -> UploadTracker:
        return self._uploads

    # ---- 文件列表 ----

    def get(self, project_id: str) -> list[ProjectFile] | None:
        return self._files.get(project_id)

    def project_files_entry(self, project_id: str) -> CacheEntry[str, list[ProjectFile]] | None:
        return self._files.entry(project_id)

    async def get_project_files(self, project_id: str) -> list[ProjectFile]:
        return await self._files.get_or_fetch(project_id)

    async def refresh_project_files(self, project_id: str) -> list[ProjectFile]:
        return await self._files.refresh(project_id)

    async def delete_project_file(self, project_id: str, file_id: str) -> None:
        await self._api.delete_project_file(project_id=project_id, file_id=file_id)
        self._files.patch(project_id, lambda files: [f for f in files if f.id != file_id])

    async def get_download_info(self, project_id: str, file_id: str) -> FileDownload:
        return await self._api.get_file_download(project_id=project_id, file_id=file_id)

    # ---- 上传 ----

    def begin_upload(self, project_id: str, files: Sequence[LocalFile]) -> UploadHandle:
        """
        开始上传并立即返回（必须在事件循环里调用）。

        同一个项目可以并发多次上传，每次都是独立的 task。
        """
        task_id = self._uploads.begin(resource_id=project_id, file_count=len(files))
        task = asyncio.ensure_future(self._run_upload(task_id=task_id, project_id=project_id, files=files))
        task.add_done_callback(_consume_upload_result)
        return UploadHandle(task_id=task_id, task=task)

    async def upload_project_files(self, project_id: str, files: Sequence[LocalFile]) -> UploadFilesResponse:
        handle = self.begin_upload(project_id=project_id, files=files)
        return await handle.task

    def get_upload_status(self, task_id: str) -> UploadTask | None:
        return self._uploads.get(task_id)

    def cleanup_uploads(self, force: bool = False) -> list[str]:
        return self._uploads.cleanup(force=force)

    async def _run_upload(self, task_id: str, project_id: str, files: Sequence[LocalFile]) -> UploadFilesResponse:
        def on_progress(percent: int) -> None:
            task = self._uploads.get(task_id)
            # 任务可能已被 clear_all 清掉：迟到的回调直接忽略
            if task is None or task.is_terminal:
                return
            self._uploads.report_progress(task_id, percent)

        try:
            result = await self._api.upload_project_files(project_id=project_id, files=files, on_progress=on_progress)
        except asyncio.CancelledError:
            self._fail_upload(task_id, "Upload cancelled")
            raise
        except Exception as exc:
            message = error_message(exc, default="Upload failed")
            self._fail_upload(task_id, message)
            raise UploadError(task_id=task_id, message=message) from exc

        if self._uploads.get(task_id) is not None:
            self._uploads.complete(task_id)

        # 先把新文件插到列表最前面（服务端按 uploadedAt 倒序），再标记过期，下次读取会重新拉取
        uploaded_ids = {f.id for f in result.files}
        self._files.patch(
            project_id,
            lambda current: list(result.files) + [f for f in current if f.id not in uploaded_ids],
        )
        self._files.invalidate(project_id)
        return result

    def _fail_upload(self, task_id: str, message: str) -> None:
        task = self._uploads.get(task_id)
        if task is not None and not task.is_terminal:
            self._uploads.fail(task_id, message)

    # ---- 预览 ----

    async def preview_file(self, project_id: str, file_id: str) -> FilePreview:
        self.preview = PreviewState(loading=True)
        try:
            preview = await self._api.get_file_preview(project_id=project_id, file_id=file_id)
        except Exception as exc:
            self.preview = PreviewState(error=error_message(exc, default="Failed to preview file"))
            raise
        self.preview = PreviewState(file=preview)
        return preview

    def close_preview(self) -> None:
        self.preview = PreviewState()

    # ---- 清理 / 快照 ----

    def clear_project_files(self, project_id: str) -> None:
        self._files.clear(project_id)

    def clear_all(self) -> None:
        self._files.clear_all()
        self._uploads.clear()
        self.preview = PreviewState()

    def export_snapshot(self) -> str:
        return dump_snapshot(self._files.cache, _FILES_ADAPTER)

    def import_snapshot(self, raw: str | None) -> int:
        return load_snapshot(self._files.cache, raw, _FILES_ADAPTER)

    def persist(self, store: SnapshotStore) -> None:
        store.set(SNAPSHOT_KEY, self.export_snapshot())

    def restore(self, store: SnapshotStore) -> int:
        restored = self.import_snapshot(store.get(SNAPSHOT_KEY))
        logger.info(f"Restored {restored} project file list(s) from snapshot")
        return restored
