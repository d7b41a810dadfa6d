"""
客户端组装入口。

这里做三件事：
- 加载配置（严格校验环境变量）
- 组装外部依赖（共享的 `httpx.AsyncClient` + REST API client）
- 构造各业务 store（显式实例，依赖注入，不使用模块级单例）

注意：
- 缓存 / 上传逻辑不写在这里（由 `portal/stores/*` 负责）
- `httpx.AsyncClient` 会被复用（避免每个请求新建连接），用完调用 `Portal.aclose()`
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

import httpx

from portal.api.client import PortalApiClient
from portal.cache.resource_cache import Clock
from portal.config import PortalConfig
from portal.config import load_config_from_env
from portal.stores.admin import AdminStore
from portal.stores.files import FileStore
from portal.stores.notifications import NotificationStore
from portal.stores.projects import ProjectStore


@dataclass
class Portal:
    """一个 UI 会话持有的全部 store（共享同一个 HTTP client）。"""

    config: PortalConfig
    http_client: httpx.AsyncClient
    api: PortalApiClient
    files: FileStore
    admin: AdminStore
    notifications: NotificationStore
    projects: ProjectStore

    def clear_all(self) -> None:
        """整体重置（例如登出）：清空所有缓存和上传任务。"""
        self.files.clear_all()
        self.admin.clear_all()
        self.notifications.clear_all()
        self.projects.clear_all()

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_portal(
    config: PortalConfig,
    http_client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
) -> Portal:
    """
    根据配置创建 `Portal`。

    - http_client：测试时可注入挂了 MockTransport / ASGITransport 的 client
    - clock：测试时注入假时钟（秒）
    """
    client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(config.api.timeout_seconds))
    api = PortalApiClient(base_url=str(config.api.base_url).rstrip("/"), http_client=client)
    cache = config.cache
    extra = {"clock": clock} if clock is not None else {}

    return Portal(
        config=config,
        http_client=client,
        api=api,
        files=FileStore(
            api=api,
            project_files_ttl_seconds=cache.project_files_ttl_seconds,
            upload_grace_seconds=cache.upload_grace_seconds,
            **extra,
        ),
        admin=AdminStore(
            api=api,
            file_statistics_ttl_seconds=cache.file_statistics_ttl_seconds,
            dashboard_stats_ttl_seconds=cache.dashboard_stats_ttl_seconds,
            list_ttl_seconds=cache.project_list_ttl_seconds,
            **extra,
        ),
        notifications=NotificationStore(api=api, ttl_seconds=cache.notifications_ttl_seconds, **extra),
        projects=ProjectStore(api=api, ttl_seconds=cache.project_list_ttl_seconds, **extra),
    )


def build_portal_from_env(environ: Mapping[str, str] | None = None) -> Portal:
    """配置缺失会直接抛 `ValueError`（这是期望行为）。"""
    return build_portal(load_config_from_env(os.environ if environ is None else environ))
