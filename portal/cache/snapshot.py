from __future__ import annotations

"""
缓存快照（best-effort 持久化）。

只持久化每个 key 的 `data` + `last_fetched_at`：
- 不持久化 loading / error / 上传进度这类瞬时状态
- 快照损坏只记日志并忽略（它只是个加速手段，不能让启动失败）

存储后端：
- `SnapshotStore` Protocol：定义 get/set 接口
- `InMemorySnapshotStore`：便于本地运行/单元测试
- `JsonFileSnapshotStore`：单个 JSON 文件，跨进程重启保留
"""

import json
import logging
import os
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import TypeAdapter, ValidationError

from portal.cache.resource_cache import ResourceCache

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    """快照存储协议（用于依赖倒置，方便替换内存/文件）。"""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


@dataclass
class InMemorySnapshotStore:
    """内存快照：只用于开发/测试。"""

    store: MutableMapping[str, str] = field(default_factory=dict)

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def set(self, key: str, value: str) -> None:
        self.store[key] = value


class JsonFileSnapshotStore:
    """把所有快照放进一个 JSON 文件（{name: raw_snapshot}）。"""

    def __init__(self, path: str) -> None:
        self._path = path

    def _read_all(self) -> dict[str, str]:
        if not os.path.exists(self._path):
            return {}
        with open(self._path, encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except ValueError:
                # JSONDecodeError 和 UnicodeDecodeError 都是 ValueError
                logger.warning(f"Ignoring corrupt snapshot file: {self._path}")
                return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        directory = os.path.dirname(self._path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, ensure_ascii=False)
        os.replace(tmp_path, self._path)


def dump_snapshot(cache: ResourceCache[str, Any], adapter: TypeAdapter[Any]) -> str:
    """把缓存序列化为 JSON 字符串（key 必须是 str）。"""
    entries: dict[str, dict[str, Any]] = {}
    for key, (data, fetched_at) in cache.export_entries().items():
        entries[key] = {
            "data": adapter.dump_python(data, mode="json"),
            "lastFetchedAt": fetched_at,
        }
    return json.dumps({"version": 1, "entries": entries}, ensure_ascii=False, sort_keys=True)


def load_snapshot(cache: ResourceCache[str, Any], raw: str | None, adapter: TypeAdapter[Any]) -> int:
    """
    把快照恢复进缓存，返回恢复的 entry 数。

    - raw 为空：什么都不做
    - 整体损坏：记日志返回 0
    - 单个 entry 不符合 schema：跳过该 entry
    """
    if not raw:
        return 0
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring corrupt cache snapshot (invalid JSON)")
        return 0
    if not isinstance(parsed, dict) or not isinstance(parsed.get("entries"), dict):
        logger.warning("Ignoring cache snapshot with unexpected shape")
        return 0

    restored = 0
    for key, item in parsed["entries"].items():
        if not isinstance(item, dict) or "data" not in item:
            continue
        fetched_at = item.get("lastFetchedAt")
        if fetched_at is not None and not isinstance(fetched_at, (int, float)):
            fetched_at = None
        try:
            data = adapter.validate_python(item["data"])
        except ValidationError as exc:
            logger.warning(f"Skipping snapshot entry {key!r}: {exc}")
            continue
        cache.seed(key, data, fetched_at)
        restored += 1
    return restored
