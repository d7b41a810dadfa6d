"""
当前用户自己的项目 store（列表 + 搜索 + 新建 / 删除）。

- 项目列表只有一个缓存 key；搜索结果按 `ListQuery` 分别缓存
- 新建 / 删除成功后：patch 列表（新项目插到最前面 / 删掉的移除），
  然后 invalidate 列表和所有搜索页，下次读取以服务端为准
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping

from portal.api.client import PortalApiClient
from portal.api.schemas import Project
from portal.api.schemas import ProjectDraft
from portal.api.schemas import ProjectPage
from portal.cache.entry import CacheEntry
from portal.cache.resource_cache import Clock
from portal.stores.base import ListQuery
from portal.stores.base import ResourceStore

logger = logging.getLogger(__name__)

MY_PROJECTS_KEY = "my-projects"


def _drop_from_page(page: ProjectPage, project_id: str) -> ProjectPage:
    items = [p for p in page.items if p.id != project_id]
    if len(items) == len(page.items):
        return page
    pagination = page.pagination.model_copy(update={"total": max(0, page.pagination.total - 1)})
    return page.model_copy(update={"items": items, "pagination": pagination})


class ProjectStore:
    """学生端项目的 store façade。"""

    def __init__(self, api: PortalApiClient, ttl_seconds: float = 120.0, clock: Clock = time.time) -> None:
        self._api = api
        self._projects: ResourceStore[str, list[Project]] = ResourceStore(
            loader=lambda _key: api.list_my_projects(),
            ttl_seconds=ttl_seconds,
            clock=clock,
            name="my-projects",
        )
        self._searches: ResourceStore[ListQuery, ProjectPage] = ResourceStore(
            loader=lambda q: api.search_my_projects(page=q.page, limit=q.limit, filters=q.filter_dict()),
            ttl_seconds=ttl_seconds,
            clock=clock,
            name="my-project-search",
        )

    def get(self) -> list[Project] | None:
        return self._projects.get(MY_PROJECTS_KEY)

    def projects_entry(self) -> CacheEntry[str, list[Project]] | None:
        return self._projects.entry(MY_PROJECTS_KEY)

    async def get_projects(self) -> list[Project]:
        return await self._projects.get_or_fetch(MY_PROJECTS_KEY)

    async def refresh_projects(self) -> list[Project]:
        return await self._projects.refresh(MY_PROJECTS_KEY)

    async def search_projects(
        self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None
    ) -> ProjectPage:
        """filters 例如 `{"q": "robot", "status": "approved"}`，空值会被忽略。"""
        return await self._searches.get_or_fetch(ListQuery.build(page=page, limit=limit, filters=filters))

    def search_entry(
        self, page: int = 1, limit: int = 10, filters: Mapping[str, str] | None = None
    ) -> CacheEntry[ListQuery, ProjectPage] | None:
        return self._searches.entry(ListQuery.build(page=page, limit=limit, filters=filters))

    async def create_project(self, draft: ProjectDraft) -> Project:
        project = await self._api.create_project(draft)
        self._projects.patch(
            MY_PROJECTS_KEY, lambda current: [project, *(p for p in current if p.id != project.id)]
        )
        self._projects.invalidate(MY_PROJECTS_KEY)
        self._searches.invalidate_where(lambda _query: True)
        logger.info(f"Project created: {project.id}")
        return project

    async def delete_project(self, project_id: str) -> None:
        await self._api.delete_my_project(project_id)
        self._projects.patch(MY_PROJECTS_KEY, lambda current: [p for p in current if p.id != project_id])
        self._projects.invalidate(MY_PROJECTS_KEY)
        self._searches.patch_all(lambda page: _drop_from_page(page, project_id))
        self._searches.invalidate_where(lambda _query: True)

    def clear_projects(self) -> None:
        self._projects.clear_all()

    def clear_all(self) -> None:
        self.clear_projects()
        self._searches.clear_all()
