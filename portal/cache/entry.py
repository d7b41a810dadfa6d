"""
缓存条目 + 新鲜度策略。

一个 `CacheEntry` 记录一个异步获取资源的全部簿记信息：
- data：最后一次成功 fetch 的结果（首次成功前不存在）
- status：idle / loading / error
- error_message：只在 status=error 时存在
- last_fetched_at：每次成功 fetch 时打点；invalidate 会清掉

`StalenessPolicy` 只回答一个问题：手里的数据还能不能直接用？
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class FetchStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


@dataclass
class CacheEntry(Generic[K, V]):
    """单个 key 的缓存记录。`has_data` 用来区分“数据为 None”和“从未拿到过数据”。"""

    key: K
    data: V | None = None
    has_data: bool = False
    status: FetchStatus = FetchStatus.IDLE
    error_message: str | None = None
    last_fetched_at: float | None = None

    def store(self, data: V, fetched_at: float) -> None:
        self.data = data
        self.has_data = True
        self.status = FetchStatus.IDLE
        self.error_message = None
        self.last_fetched_at = fetched_at

    def mark_loading(self) -> None:
        self.status = FetchStatus.LOADING
        self.error_message = None

    def mark_error(self, message: str) -> None:
        # data 保持不动：宁可展示旧数据，也不要因为一次网络抖动清空视图
        self.status = FetchStatus.ERROR
        self.error_message = message or "Unknown error"

    def invalidate(self) -> None:
        self.last_fetched_at = None


@dataclass(frozen=True)
class StalenessPolicy:
    """按资源类别固定的 TTL（秒）。"""

    ttl_seconds: float

    def __post_init__(self) -> None:
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")

    def is_fresh(self, entry: CacheEntry[K, V] | None, now: float) -> bool:
        """FRESH 当且仅当：有 data、有 last_fetched_at、且 now - last_fetched_at < ttl。"""
        if entry is None or not entry.has_data or entry.last_fetched_at is None:
            return False
        return now - entry.last_fetched_at < self.ttl_seconds

    def is_stale(self, entry: CacheEntry[K, V] | None, now: float) -> bool:
        return not self.is_fresh(entry, now)
