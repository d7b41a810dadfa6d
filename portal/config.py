"""
客户端配置加载。

要点：
- 只有 API 地址是必填的，缺了直接报错
- URL / 超时 / TTL 都交给 Pydantic 校验（TTL 必须 > 0）
- 加载函数接收显式的 `environ`，测试里直接传 dict
- 各资源的缓存新鲜度窗口（2/5/10 分钟）只是默认值，可以用环境变量覆盖
"""

from __future__ import annotations

from collections.abc import Mapping

from pydantic import BaseModel, Field, HttpUrl


class ApiConfig(BaseModel):
    """远端 REST API 连接配置。"""

    base_url: HttpUrl
    timeout_seconds: float = Field(default=30.0, gt=0)


class CacheConfig(BaseModel):
    """各资源类别的缓存 TTL（秒）以及上传任务的保留窗口。"""

    project_files_ttl_seconds: float = Field(default=120.0, gt=0)
    file_statistics_ttl_seconds: float = Field(default=300.0, gt=0)
    dashboard_stats_ttl_seconds: float = Field(default=600.0, gt=0)
    project_list_ttl_seconds: float = Field(default=120.0, gt=0)
    notifications_ttl_seconds: float = Field(default=60.0, gt=0)
    upload_grace_seconds: float = Field(default=3.0, ge=0)


class PortalConfig(BaseModel):
    api: ApiConfig
    cache: CacheConfig = Field(default_factory=CacheConfig)


_CACHE_ENV_KEYS: dict[str, str] = {
    "PORTAL_TTL_PROJECT_FILES_SECONDS": "project_files_ttl_seconds",
    "PORTAL_TTL_FILE_STATISTICS_SECONDS": "file_statistics_ttl_seconds",
    "PORTAL_TTL_DASHBOARD_STATS_SECONDS": "dashboard_stats_ttl_seconds",
    "PORTAL_TTL_PROJECT_LIST_SECONDS": "project_list_ttl_seconds",
    "PORTAL_TTL_NOTIFICATIONS_SECONDS": "notifications_ttl_seconds",
    "PORTAL_UPLOAD_GRACE_SECONDS": "upload_grace_seconds",
}


def _optional(environ: Mapping[str, str], key: str) -> str | None:
    value = environ.get(key)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_config_from_env(environ: Mapping[str, str]) -> PortalConfig:
    """
    从环境变量加载并校验配置。

    - **输入**：`environ`（例如 `os.environ`）
    - **输出**：`PortalConfig`
    - **失败**：缺少 `PORTAL_API_BASE_URL`、数值非法或 TTL <= 0 都抛 `ValueError`
    """
    base_url = _optional(environ, "PORTAL_API_BASE_URL")
    if base_url is None:
        raise ValueError("Missing required env vars: PORTAL_API_BASE_URL")

    api_fields: dict[str, object] = {"base_url": base_url}
    timeout = _optional(environ, "PORTAL_API_TIMEOUT_SECONDS")
    if timeout is not None:
        api_fields["timeout_seconds"] = timeout

    cache_fields: dict[str, object] = {}
    for env_key, field_name in _CACHE_ENV_KEYS.items():
        value = _optional(environ, env_key)
        if value is not None:
            cache_fields[field_name] = value

    # 交给 Pydantic 做类型校验（ValidationError 是 ValueError 的子类）
    return PortalConfig(api=ApiConfig(**api_fields), cache=CacheConfig(**cache_fields))
