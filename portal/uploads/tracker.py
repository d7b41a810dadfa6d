"""
上传进度跟踪器（按 task id 管理多个并发上传）。

生命周期：
- `begin` 创建任务：status=uploading，progress=0
- uploading 期间 progress 单调不减（乱序回调会被 clamp，不会回退）
- 只会终止一次：`complete`（progress 强制 100）或 `fail`（progress 冻结）
- 终止后的任务保留一个 grace 窗口（默认 3 秒），让 UI 能展示“100% / 完成”，
  之后由**显式**调用 `cleanup()` 回收；uploading 的任务永远不会被 cleanup 删除
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from portal.errors import UsageError

logger = logging.getLogger(__name__)


class UploadStatus(str, Enum):
    UPLOADING = "uploading"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class UploadTask:
    id: str
    resource_id: str
    total_files: int
    created_at: float
    completed_files: int = 0
    progress_percent: int = 0
    status: UploadStatus = UploadStatus.UPLOADING
    error_message: str | None = None
    finished_at: float | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not UploadStatus.UPLOADING


class UploadTracker:
    """
    上传任务表。任务之间互不影响：只共享这张按 id 索引的 dict。

    - grace_seconds: 终止任务在被 cleanup 回收前至少保留多久
    - clock: 秒级时钟（用于 grace 窗口）
    - id_clock: 高精度时间戳（用于生成 task id）
    """

    def __init__(
        self,
        grace_seconds: float = 3.0,
        clock: Callable[[], float] = time.time,
        id_clock: Callable[[], int] = time.time_ns,
    ) -> None:
        if grace_seconds < 0:
            raise ValueError("grace_seconds must be >= 0")
        self._grace_seconds = grace_seconds
        self._clock = clock
        self._id_clock = id_clock
        self._tasks: dict[str, UploadTask] = {}

    @property
    def grace_seconds(self) -> float:
        return self._grace_seconds

    def begin(self, resource_id: str, file_count: int) -> str:
        """创建新任务并返回 task id（`{resource_id}_{timestamp}`）。"""
        if not resource_id:
            raise UsageError("resource_id must be non-empty")
        if file_count < 1:
            raise UsageError("file_count must be >= 1")

        stamp = self._id_clock()
        task_id = f"{resource_id}_{stamp}"
        # 同一时刻对同一资源多次 begin：时间戳顺延，保证 id 不冲突
        while task_id in self._tasks:
            stamp += 1
            task_id = f"{resource_id}_{stamp}"

        self._tasks[task_id] = UploadTask(
            id=task_id,
            resource_id=resource_id,
            total_files=file_count,
            created_at=self._clock(),
        )
        logger.info(f"Upload started: {task_id} ({file_count} file(s))")
        return task_id

    def report_progress(self, task_id: str, percent: float) -> int:
        """
        更新进度，返回更新后的百分比。

        - 超出 0-100 的值会被 clamp
        - 比当前值小的进度（乱序回调）被忽略
        - 未知 / 已终止任务：抛 `UsageError`
        """
        task = self._require_uploading(task_id)
        clamped = max(0, min(100, int(round(percent))))
        if clamped > task.progress_percent:
            task.progress_percent = clamped
        return task.progress_percent

    def mark_file_completed(self, task_id: str) -> int:
        task = self._require_uploading(task_id)
        if task.completed_files < task.total_files:
            task.completed_files += 1
        return task.completed_files

    def complete(self, task_id: str) -> UploadTask:
        task = self._require_uploading(task_id)
        task.status = UploadStatus.COMPLETED
        task.progress_percent = 100
        task.completed_files = task.total_files
        task.finished_at = self._clock()
        logger.info(f"Upload completed: {task_id}")
        return dataclasses.replace(task)

    def fail(self, task_id: str, message: str) -> UploadTask:
        task = self._require_uploading(task_id)
        task.status = UploadStatus.ERROR
        task.error_message = message or "Upload failed"
        task.finished_at = self._clock()
        logger.warning(f"Upload failed: {task_id}: {task.error_message}")
        return dataclasses.replace(task)

    def get(self, task_id: str) -> UploadTask | None:
        task = self._tasks.get(task_id)
        if task is None:
            return None
        return dataclasses.replace(task)

    def tasks(self) -> list[UploadTask]:
        return [dataclasses.replace(t) for t in self._tasks.values()]

    def active(self) -> list[UploadTask]:
        return [dataclasses.replace(t) for t in self._tasks.values() if not t.is_terminal]

    def cleanup(self, now: float | None = None, force: bool = False) -> list[str]:
        """
        删除 grace 窗口已过的终止任务，返回被删除的 task id。

        - force=True：忽略 grace 窗口（例如组件卸载时）
        - uploading 的任务永远保留
        - 幂等：重复调用不会出错
        """
        current = self._clock() if now is None else now
        removed: list[str] = []
        for task_id, task in list(self._tasks.items()):
            if not task.is_terminal:
                continue
            finished_at = task.finished_at if task.finished_at is not None else task.created_at
            if force or current - finished_at >= self._grace_seconds:
                del self._tasks[task_id]
                removed.append(task_id)
        if removed:
            logger.debug(f"Cleaned up {len(removed)} upload task(s)")
        return removed

    def clear(self) -> None:
        """清空所有任务（包括进行中的），只用于整体重置（例如登出）。"""
        self._tasks.clear()

    def _require_uploading(self, task_id: str) -> UploadTask:
        task = self._tasks.get(task_id)
        if task is None:
            raise UsageError(f"Unknown upload task: {task_id}")
        if task.is_terminal:
            raise UsageError(f"Upload task {task_id} is already {task.status.value}")
        return task
