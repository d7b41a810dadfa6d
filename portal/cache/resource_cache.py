"""
通用资源缓存（TTL 新鲜度 + 单 key 单飞）。

核心约定：
- **FRESH 直接返回**：不会调用 `fetch_fn`
- **同一个 key 最多一个有效的 in-flight fetch**：并发调用方共享同一个 `asyncio.Task`，
  拿到的是同一个结果对象（不是错误，只是被合并）
- **写入即换代**：invalidate / put / patch / clear 会让该 key 进入新的 generation；
  旧 generation 的 fetch 结果只交给它自己的调用方，不再写回缓存，
  之后的调用也不会再加入它，而是发起新的 fetch
- **失败不丢旧数据**：status=error + error_message，data 保持上一次成功的值，
  然后把 `FetchError` 抛给调用方（是否重试由调用方决定）
- **不自动重试**
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from typing import Generic, TypeVar

from portal.cache.entry import CacheEntry
from portal.cache.entry import FetchStatus
from portal.cache.entry import StalenessPolicy
from portal.errors import FetchError
from portal.errors import error_message

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

FetchFn = Callable[[], Awaitable[V]]
Clock = Callable[[], float]


class ResourceCache(Generic[K, V]):
    """按 key 缓存异步获取的资源，单个 store façade 独占。"""

    def __init__(self, policy: StalenessPolicy, clock: Clock = time.time, name: str = "cache") -> None:
        """
        - policy: 该资源类别的默认 TTL
        - clock: 返回“秒”的时钟（测试里注入假时钟）
        - name: 仅用于日志
        """
        self._policy = policy
        self._clock = clock
        self._name = name
        self._entries: dict[K, CacheEntry[K, V]] = {}
        self._in_flight: dict[K, tuple[int, asyncio.Task[V]]] = {}
        # generation：单调递增；没有单独记录的 key 使用 _generation_floor
        self._generation_seq = 0
        self._generation_floor = 0
        self._generations: dict[K, int] = {}

    @property
    def policy(self) -> StalenessPolicy:
        return self._policy

    def get(self, key: K) -> V | None:
        """同步读缓存，不会触发 fetch。"""
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return None
        return entry.data

    def entry(self, key: K) -> CacheEntry[K, V] | None:
        """返回 entry 的拷贝（调用方不能借此修改内部状态）。"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        return dataclasses.replace(entry)

    def keys(self) -> Iterator[K]:
        return iter(list(self._entries))

    def is_fresh(self, key: K, ttl_seconds: float | None = None) -> bool:
        return self._policy_for(ttl_seconds).is_fresh(self._entries.get(key), self._clock())

    def is_in_flight(self, key: K) -> bool:
        """当前 generation 是否有 fetch 在进行（被换代的旧 fetch 不算）。"""
        flight = self._in_flight.get(key)
        return flight is not None and flight[0] == self._generation(key)

    async def get_or_fetch(self, key: K, fetch_fn: FetchFn[V], ttl_seconds: float | None = None) -> V:
        """
        FRESH 则返回缓存；否则发起（或加入当前 generation 已有的）fetch。

        - ttl_seconds: 覆盖本次调用使用的 TTL（None 表示用默认 policy）
        - 失败：抛 `FetchError`（原始异常在 `__cause__` 上）
        """
        policy = self._policy_for(ttl_seconds)
        entry = self._entries.get(key)
        if entry is not None and policy.is_fresh(entry, self._clock()):
            return entry.data  # type: ignore[return-value]

        generation = self._generation(key)
        flight = self._in_flight.get(key)
        if flight is not None and flight[0] == generation:
            pending = flight[1]
            logger.debug(f"{self._name}: joining in-flight fetch for {key!r}")
        else:
            if flight is not None:
                logger.debug(f"{self._name}: superseding outdated fetch for {key!r}")
            self._ensure_entry(key).mark_loading()
            pending = asyncio.ensure_future(self._run_fetch(key, fetch_fn, generation))
            self._in_flight[key] = (generation, pending)

        # shield：某个调用方被取消时，共享的 fetch 仍会完成并写回缓存
        return await asyncio.shield(pending)

    async def force_refresh(self, key: K, fetch_fn: FetchFn[V], ttl_seconds: float | None = None) -> V:
        """等价于 invalidate + get_or_fetch。"""
        self.invalidate(key)
        return await self.get_or_fetch(key, fetch_fn, ttl_seconds=ttl_seconds)

    def invalidate(self, key: K) -> None:
        """清掉 last_fetched_at，保留 data（刷新期间仍可展示旧数据）。"""
        self._bump(key)
        entry = self._entries.get(key)
        if entry is not None:
            entry.invalidate()

    def invalidate_all(self) -> None:
        self._bump_all()
        for entry in self._entries.values():
            entry.invalidate()

    def put(self, key: K, data: V) -> None:
        """写操作返回了权威数据时直接写入，视为一次成功 fetch。"""
        self._bump(key)
        self._ensure_entry(key).store(data, self._clock())

    def patch(self, key: K, fn: Callable[[V], V]) -> bool:
        """
        在缓存数据上就地应用变换（写操作成功后用），不改变新鲜度。

        返回是否真的 patch 了（没有 data 的 entry 不动）。
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return False
        self._bump(key)
        entry.data = fn(entry.data)  # type: ignore[arg-type]
        return True

    def clear(self, key: K) -> None:
        """
        删除 entry，回到 never-fetched 状态。

        正在进行的 fetch 不会被取消，但它的结果不会再写回缓存。
        """
        self._bump(key)
        self._entries.pop(key, None)

    def clear_all(self) -> None:
        self._bump_all()
        self._entries.clear()

    def export_entries(self) -> dict[K, tuple[V, float | None]]:
        """只导出 data + last_fetched_at（用于持久化快照）。"""
        return {
            key: (entry.data, entry.last_fetched_at)  # type: ignore[misc]
            for key, entry in self._entries.items()
            if entry.has_data
        }

    def seed(self, key: K, data: V, last_fetched_at: float | None) -> None:
        """从快照恢复一个 entry（status 总是 idle）。"""
        self._bump(key)
        entry = self._ensure_entry(key)
        entry.data = data
        entry.has_data = True
        entry.status = FetchStatus.IDLE
        entry.error_message = None
        entry.last_fetched_at = last_fetched_at

    def _policy_for(self, ttl_seconds: float | None) -> StalenessPolicy:
        if ttl_seconds is None:
            return self._policy
        return StalenessPolicy(ttl_seconds=ttl_seconds)

    def _ensure_entry(self, key: K) -> CacheEntry[K, V]:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
        return entry

    def _generation(self, key: K) -> int:
        return self._generations.get(key, self._generation_floor)

    def _bump(self, key: K) -> None:
        self._generation_seq += 1
        self._generations[key] = self._generation_seq

    def _bump_all(self) -> None:
        self._generation_seq += 1
        self._generation_floor = self._generation_seq
        self._generations.clear()

    def _settle(self, key: K) -> None:
        """没有 fetch 在进行时，不能停留在 loading。"""
        if key in self._in_flight:
            return
        entry = self._entries.get(key)
        if entry is not None and entry.status is FetchStatus.LOADING:
            entry.status = FetchStatus.IDLE

    async def _run_fetch(self, key: K, fetch_fn: FetchFn[V], generation: int) -> V:
        try:
            data = await fetch_fn()
        except Exception as exc:
            message = error_message(exc, default="Failed to fetch")
            if self._generation(key) == generation:
                self._ensure_entry(key).mark_error(message)
            logger.warning(f"{self._name}: fetch failed for {key!r}: {message}")
            raise FetchError(key, message) from exc
        finally:
            flight = self._in_flight.get(key)
            if flight is not None and flight[1] is asyncio.current_task():
                del self._in_flight[key]
            self._settle(key)

        if self._generation(key) != generation:
            logger.debug(f"{self._name}: discarding outdated result for {key!r}")
            return data
        self._ensure_entry(key).store(data, self._clock())
        return data
