from __future__ import annotations

"""
错误类型（客户端 store 层统一使用）。

分类：
- `ApiError`：远端 REST 调用失败（HTTP >= 400 或响应结构不符合 schema）
- `FetchError`：缓存层 fetch 失败（包装原始异常，保留已有 data）
- `UploadError`：单个上传任务失败（不影响其他并发任务）
- `UsageError`：调用方违反契约（未知 task id、对已终止任务报进度等）

注意：重复 fetch 被合并（duplicate suppressed）**不是错误**，不会抛异常。
"""


class ApiError(RuntimeError):
    """远端 API 错误：带 HTTP 状态码和可直接展示给用户的 message。"""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"API error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class FetchError(RuntimeError):
    """缓存 fetch 失败：`message` 会写入 entry.error_message。"""

    def __init__(self, key: object, message: str) -> None:
        super().__init__(f"Fetch failed for {key!r}: {message}")
        self.key = key
        self.message = message


class UploadError(RuntimeError):
    """上传任务失败（对应 tracker 中 status=error 的任务）。"""

    def __init__(self, task_id: str, message: str) -> None:
        super().__init__(f"Upload {task_id} failed: {message}")
        self.task_id = task_id
        self.message = message


class UsageError(RuntimeError):
    """内部契约被违反：属于程序错误，应该尽早暴露。"""

    pass


def error_message(exc: BaseException, default: str) -> str:
    """从异常中取出可展示的 message（优先 ApiError.message）。"""
    if isinstance(exc, (ApiError, FetchError, UploadError)):
        return exc.message
    text = str(exc)
    return text or default
