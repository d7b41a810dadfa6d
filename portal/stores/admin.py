"""
管理后台 store（文件统计 / 仪表盘统计 / 项目与用户分页列表 / 审核写操作）。

缓存 TTL（默认值，均可配置）：
- 文件统计：5 分钟
- 仪表盘统计：10 分钟
- 项目 / 用户分页列表：2 分钟（按 page+limit+filters 分别缓存）

写操作（改状态 / 删除 / 批量）成功后：
- patch 所有已缓存的项目页，让界面立即反映变化
- 同时 invalidate 项目页和统计（计数、筛选结果都可能变了）
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone

from pydantic import TypeAdapter

from portal.api.client import PortalApiClient
from portal.api.schemas import BulkUpdateResult
from portal.api.schemas import DashboardStats
from portal.api.schemas import FileStatistics
from portal.api.schemas import ProjectPage
from portal.api.schemas import UserPage
from portal.cache.entry import CacheEntry
from portal.cache.resource_cache import Clock
from portal.cache.snapshot import SnapshotStore
from portal.cache.snapshot import dump_snapshot
from portal.cache.snapshot import load_snapshot
from portal.stores.base import ListQuery
from portal.stores.base import ResourceStore
from portal.stores.project_filter import ProjectFilter
from portal.stores.project_filter import ProjectListView
from portal.stores.project_filter import build_project_view

logger = logging.getLogger(__name__)

FILE_STATS_KEY = "file-statistics"
DASHBOARD_KEY = "dashboard-stats"
SNAPSHOT_PREFIX = "admin-store"

BULK_ACTIONS = ("updateStatus", "delete")

_FILE_STATS_ADAPTER: TypeAdapter[FileStatistics] = TypeAdapter(FileStatistics)
_DASHBOARD_ADAPTER: TypeAdapter[DashboardStats] = TypeAdapter(DashboardStats)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _with_status(page: ProjectPage, project_ids: set[str], status: str, review_comment: str) -> ProjectPage:
    updated_at = _now_iso()
    items = [
        p.model_copy(update={"status": status, "reviewComment": review_comment, "updatedAt": updated_at})
        if p.id in project_ids
        else p
        for p in page.items
    ]
    return page.model_copy(update={"items": items})


def _without(page: ProjectPage, project_ids: set[str]) -> ProjectPage:
    items = [p for p in page.items if p.id not in project_ids]
    removed = len(page.items) - len(items)
    pagination = page.pagination.model_copy(update={"total": max(0, page.pagination.total - removed)})
    return page.model_copy(update={"items": items, "pagination": pagination})


class AdminStore:
    """管理后台的 store façade。"""

    def __init__(
        self,
        api: PortalApiClient,
        file_statistics_ttl_seconds: float = 300.0,
        dashboard_stats_ttl_seconds: float = 600.0,
        list_ttl_seconds: float = 120.0,
        clock: Clock = time.time,
    ) -> None:
        self._api = api
        self._file_stats: ResourceStore[str, FileStatistics] = ResourceStore(
            loader=lambda _key: api.get_file_statistics(),
            ttl_seconds=file_statistics_ttl_seconds,
            clock=clock,
            name="file-statistics",
        )
        self._dashboard: ResourceStore[str, DashboardStats] = ResourceStore(
            loader=lambda _key: api.get_dashboard_stats(),
            ttl_seconds=dashboard_stats_ttl_seconds,
            clock=clock,
            name="dashboard-stats",
        )
        self._projects: ResourceStore[ListQuery, ProjectPage] = ResourceStore(
            loader=lambda q: api.list_projects(page=q.page, limit=q.limit, filters=q.filter_dict()),
            ttl_seconds=list_ttl_seconds,
            clock=clock,
            name="admin-projects",
        )
        self._users: ResourceStore[ListQuery, UserPage] = ResourceStore(
            loader=lambda q: api.list_users(page=q.page, limit=q.limit, filters=q.filter_dict()),
            ttl_seconds=list_ttl_seconds,
            clock=clock,
            name="admin-users",
        )

    # ---- 统计 ----

    async def get_file_statistics(self) -> FileStatistics:
        return await self._file_stats.get_or_fetch(FILE_STATS_KEY)

    async def refresh_file_statistics(self) -> FileStatistics:
        return await self._file_stats.refresh(FILE_STATS_KEY)

    def file_statistics_entry(self) -> CacheEntry[str, FileStatistics] | None:
        return self._file_stats.entry(FILE_STATS_KEY)

    async def get_dashboard_stats(self) -> DashboardStats:
        return await self._dashboard.get_or_fetch(DASHBOARD_KEY)

    async def refresh_dashboard_stats(self) -> DashboardStats:
        return await self._dashboard.refresh(DASHBOARD_KEY)

    def dashboard_stats_entry(self) -> CacheEntry[str, DashboardStats] | None:
        return self._dashboard.entry(DASHBOARD_KEY)

    # ---- 列表 ----

    async def get_projects(
        self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None
    ) -> ProjectPage:
        return await self._projects.get_or_fetch(ListQuery.build(page=page, limit=limit, filters=filters))

    async def refresh_projects(
        self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None
    ) -> ProjectPage:
        return await self._projects.refresh(ListQuery.build(page=page, limit=limit, filters=filters))

    def projects_entry(
        self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None
    ) -> CacheEntry[ListQuery, ProjectPage] | None:
        return self._projects.entry(ListQuery.build(page=page, limit=limit, filters=filters))

    async def get_users(self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None) -> UserPage:
        return await self._users.get_or_fetch(ListQuery.build(page=page, limit=limit, filters=filters))

    async def refresh_users(self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None) -> UserPage:
        return await self._users.refresh(ListQuery.build(page=page, limit=limit, filters=filters))

    async def get_project_view(
        self,
        flt: ProjectFilter,
        page: int = 0,
        rows_per_page: int = 10,
        fetch_limit: int = 1000,
    ) -> ProjectListView:
        """批量管理页：拉取（缓存的）全部项目，再在客户端筛选 / 排序 / 分页。"""
        all_projects = await self.get_projects(page=1, limit=fetch_limit)
        return build_project_view(all_projects.items, flt, page=page, rows_per_page=rows_per_page)

    # ---- 写操作 ----

    async def update_project_status(self, project_id: str, status: str, review_comment: str = "") -> None:
        await self._api.update_project_status(project_id=project_id, status=status, review_comment=review_comment)
        self._projects.patch_all(lambda page: _with_status(page, {project_id}, status, review_comment))
        self._after_project_write()

    async def delete_project(self, project_id: str) -> None:
        await self._api.delete_project(project_id=project_id)
        self._projects.patch_all(lambda page: _without(page, {project_id}))
        self._after_project_write()
        self._file_stats.invalidate(FILE_STATS_KEY)

    async def bulk_update_projects(
        self,
        project_ids: Sequence[str],
        action: str,
        status: str | None = None,
        review_comment: str = "",
    ) -> BulkUpdateResult:
        """
        批量改状态 / 删除。

        - 参数不合法（空 id 列表、未知 action、updateStatus 缺 status）直接抛 `ValueError`
        - 只 patch 服务端报告成功的项目；失败的保持原样
        """
        if not project_ids:
            raise ValueError("project_ids must not be empty")
        if action not in BULK_ACTIONS:
            raise ValueError(f"Unknown bulk action: {action}")
        if action == "updateStatus" and not status:
            raise ValueError("status is required for updateStatus")

        result = await self._api.bulk_update_projects(
            project_ids=project_ids, action=action, status=status, review_comment=review_comment
        )
        succeeded = {item.projectId for item in result.results.successful}
        if result.results.failed:
            logger.warning(f"Bulk {action}: {len(result.results.failed)} of {len(project_ids)} project(s) failed")

        if succeeded:
            if action == "updateStatus":
                new_status = status or ""
                self._projects.patch_all(lambda page: _with_status(page, succeeded, new_status, review_comment))
            else:
                self._projects.patch_all(lambda page: _without(page, succeeded))
                self._file_stats.invalidate(FILE_STATS_KEY)
            self._after_project_write()
        return result

    def _after_project_write(self) -> None:
        self._projects.invalidate_where(lambda _query: True)
        self._dashboard.invalidate(DASHBOARD_KEY)

    # ---- 清理 / 快照 ----

    def clear_users(self) -> None:
        self._users.clear_all()

    def clear_projects(self) -> None:
        self._projects.clear_all()

    def clear_file_stats(self) -> None:
        self._file_stats.clear_all()

    def clear_dashboard_stats(self) -> None:
        self._dashboard.clear_all()

    def clear_all(self) -> None:
        self.clear_users()
        self.clear_projects()
        self.clear_file_stats()
        self.clear_dashboard_stats()

    def persist(self, store: SnapshotStore) -> None:
        """只持久化统计数据（列表数据不落盘）。"""
        store.set(f"{SNAPSHOT_PREFIX}:{FILE_STATS_KEY}", dump_snapshot(self._file_stats.cache, _FILE_STATS_ADAPTER))
        store.set(f"{SNAPSHOT_PREFIX}:{DASHBOARD_KEY}", dump_snapshot(self._dashboard.cache, _DASHBOARD_ADAPTER))

    def restore(self, store: SnapshotStore) -> int:
        restored = load_snapshot(
            self._file_stats.cache, store.get(f"{SNAPSHOT_PREFIX}:{FILE_STATS_KEY}"), _FILE_STATS_ADAPTER
        )
        restored += load_snapshot(
            self._dashboard.cache, store.get(f"{SNAPSHOT_PREFIX}:{DASHBOARD_KEY}"), _DASHBOARD_ADAPTER
        )
        logger.info(f"Restored {restored} admin statistic entr(ies) from snapshot")
        return restored
