"""
Store façade 的通用部分。

`ResourceStore` = 一个 `ResourceCache` + 一个按 key 取数的 loader：
- 读：`get`（同步，只读缓存）/ `get_or_fetch`（缓存感知）/ `refresh`（强制绕过缓存）
- 写操作成功后：`patch`（就地修改）或 `invalidate`（下次读重新拉取），二者必选其一

各业务 store（files/admin/projects/notifications）持有若干个 `ResourceStore`，
自己不直接碰缓存条目。
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from portal.cache.entry import CacheEntry
from portal.cache.entry import StalenessPolicy
from portal.cache.resource_cache import Clock
from portal.cache.resource_cache import ResourceCache

K = TypeVar("K")
V = TypeVar("V")

Loader = Callable[[K], Awaitable[V]]


@dataclass(frozen=True)
class ListQuery:
    """分页列表的缓存 key：filters 归一化为排序后的元组，保证可 hash 且稳定。"""

    page: int = 1
    limit: int = 10
    filters: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    @classmethod
    def build(cls, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None) -> ListQuery:
        if page < 1:
            raise ValueError("page must be >= 1")
        if limit < 1:
            raise ValueError("limit must be >= 1")
        items = tuple(sorted((k, str(v)) for k, v in (filters or {}).items() if v not in (None, "")))
        return cls(page=page, limit=limit, filters=items)

    def filter_dict(self) -> dict[str, str]:
        return dict(self.filters)


class ResourceStore(Generic[K, V]):
    """单个资源类别的缓存感知读写入口。"""

    def __init__(
        self,
        loader: Loader[K, V],
        ttl_seconds: float,
        clock: Clock = time.time,
        name: str = "resource",
    ) -> None:
        self._loader = loader
        self._cache: ResourceCache[K, V] = ResourceCache(
            policy=StalenessPolicy(ttl_seconds=ttl_seconds),
            clock=clock,
            name=name,
        )

    @property
    def cache(self) -> ResourceCache[K, V]:
        return self._cache

    def get(self, key: K) -> V | None:
        return self._cache.get(key)

    def entry(self, key: K) -> CacheEntry[K, V] | None:
        return self._cache.entry(key)

    async def get_or_fetch(self, key: K) -> V:
        return await self._cache.get_or_fetch(key, lambda: self._loader(key))

    async def refresh(self, key: K) -> V:
        return await self._cache.force_refresh(key, lambda: self._loader(key))

    def invalidate(self, key: K) -> None:
        self._cache.invalidate(key)

    def invalidate_where(self, predicate: Callable[[K], bool]) -> None:
        for key in self._cache.keys():
            if predicate(key):
                self._cache.invalidate(key)

    def put(self, key: K, value: V) -> None:
        self._cache.put(key, value)

    def patch(self, key: K, fn: Callable[[V], V]) -> bool:
        return self._cache.patch(key, fn)

    def patch_all(self, fn: Callable[[V], V]) -> int:
        """对所有已缓存的 key 应用同一个变换，返回 patch 的条目数。"""
        return sum(1 for key in self._cache.keys() if self._cache.patch(key, fn))

    def clear(self, key: K) -> None:
        self._cache.clear(key)

    def clear_all(self) -> None:
        self._cache.clear_all()
