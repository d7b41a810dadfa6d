"""
通知 store（分页列表 + 未读数 + 偏好设置）。

- 列表按 (page, limit, unread_only, category) 缓存
- 已读 / 删除 / 全部已读 / 实时推送：patch 所有已缓存页；
  unread_only 的页以及 page>1 的页（条目会整体位移）同时 invalidate
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone

from portal.api.client import PortalApiClient
from portal.api.schemas import Notification
from portal.api.schemas import NotificationPage
from portal.api.schemas import NotificationPreferences
from portal.cache.entry import CacheEntry
from portal.cache.resource_cache import Clock
from portal.stores.base import ResourceStore

PREFERENCES_KEY = "preferences"
DEFAULT_PAGE_SIZE = 20


@dataclass(frozen=True)
class NotificationQuery:
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    unread_only: bool = False
    category: str = ""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _mark_read(page: NotificationPage, notification_id: str, read_at: str) -> NotificationPage:
    was_unread = any(n.id == notification_id and not n.isRead for n in page.notifications)
    notifications = [
        n.model_copy(update={"isRead": True, "readAt": read_at}) if n.id == notification_id and not n.isRead else n
        for n in page.notifications
    ]
    unread = max(0, page.unreadCount - 1) if was_unread else page.unreadCount
    return page.model_copy(update={"notifications": notifications, "unreadCount": unread})


def _mark_all_read(page: NotificationPage, read_at: str) -> NotificationPage:
    notifications = [
        n if n.isRead else n.model_copy(update={"isRead": True, "readAt": read_at}) for n in page.notifications
    ]
    return page.model_copy(update={"notifications": notifications, "unreadCount": 0})


def _remove(page: NotificationPage, notification_id: str) -> NotificationPage:
    target = next((n for n in page.notifications if n.id == notification_id), None)
    if target is None:
        return page
    notifications = [n for n in page.notifications if n.id != notification_id]
    unread = max(0, page.unreadCount - 1) if not target.isRead else page.unreadCount
    pagination = page.pagination.model_copy(
        update={"totalNotifications": max(0, page.pagination.totalNotifications - 1)}
    )
    return page.model_copy(update={"notifications": notifications, "unreadCount": unread, "pagination": pagination})


def _prepend(page: NotificationPage, notification: Notification) -> NotificationPage:
    if any(n.id == notification.id for n in page.notifications):
        return page
    notifications = [notification, *page.notifications]
    unread = page.unreadCount + (0 if notification.isRead else 1)
    pagination = page.pagination.model_copy(
        update={"totalNotifications": page.pagination.totalNotifications + 1}
    )
    return page.model_copy(update={"notifications": notifications, "unreadCount": unread, "pagination": pagination})


class NotificationStore:
    """通知的 store façade。"""

    def __init__(
        self,
        api: PortalApiClient,
        ttl_seconds: float = 60.0,
        page_size: int = DEFAULT_PAGE_SIZE,
        clock: Clock = time.time,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._api = api
        self._page_size = page_size
        self._pages: ResourceStore[NotificationQuery, NotificationPage] = ResourceStore(
            loader=lambda q: api.list_notifications(
                page=q.page, limit=q.limit, unread_only=q.unread_only, category=q.category
            ),
            ttl_seconds=ttl_seconds,
            clock=clock,
            name="notifications",
        )
        self._preferences: ResourceStore[str, NotificationPreferences] = ResourceStore(
            loader=lambda _key: api.get_notification_preferences(),
            ttl_seconds=ttl_seconds,
            clock=clock,
            name="notification-preferences",
        )
        self._current = NotificationQuery(limit=page_size)

    @property
    def current_query(self) -> NotificationQuery:
        return self._current

    def _query(self, page: int, unread_only: bool, category: str) -> NotificationQuery:
        if page < 1:
            raise ValueError("page must be >= 1")
        return NotificationQuery(page=page, limit=self._page_size, unread_only=unread_only, category=category)

    # ---- 列表 ----

    async def get_notifications(self, page: int = 1, unread_only: bool = False, category: str = "") -> NotificationPage:
        query = self._query(page, unread_only, category)
        self._current = query
        return await self._pages.get_or_fetch(query)

    async def refresh_notifications(self) -> NotificationPage:
        return await self._pages.refresh(self._current)

    async def go_to_page(self, page: int) -> NotificationPage:
        return await self.get_notifications(page, self._current.unread_only, self._current.category)

    async def filter_notifications(self, unread_only: bool = False, category: str = "") -> NotificationPage:
        return await self.get_notifications(1, unread_only, category)

    def current_page(self) -> NotificationPage | None:
        return self._pages.get(self._current)

    def current_entry(self) -> CacheEntry[NotificationQuery, NotificationPage] | None:
        return self._pages.entry(self._current)

    @property
    def unread_count(self) -> int:
        page = self.current_page()
        return page.unreadCount if page is not None else 0

    def get_notification_by_id(self, notification_id: str) -> Notification | None:
        page = self.current_page()
        if page is None:
            return None
        return next((n for n in page.notifications if n.id == notification_id), None)

    def get_notifications_by_category(self, category: str) -> list[Notification]:
        page = self.current_page()
        return [n for n in page.notifications if n.category == category] if page is not None else []

    def get_unread_notifications(self) -> list[Notification]:
        page = self.current_page()
        return [n for n in page.notifications if not n.isRead] if page is not None else []

    # ---- 写操作 ----

    async def mark_as_read(self, notification_id: str) -> None:
        await self._api.mark_notification_read(notification_id)
        read_at = _now_iso()
        self._pages.patch_all(lambda page: _mark_read(page, notification_id, read_at))
        self._pages.invalidate_where(lambda q: q.unread_only)

    async def mark_all_as_read(self) -> int:
        count = await self._api.mark_all_notifications_read()
        read_at = _now_iso()
        self._pages.patch_all(lambda page: _mark_all_read(page, read_at))
        self._pages.invalidate_where(lambda q: q.unread_only)
        return count

    async def delete_notification(self, notification_id: str) -> None:
        await self._api.delete_notification(notification_id)
        self._pages.patch_all(lambda page: _remove(page, notification_id))
        # 后面的页会整体前移一条
        self._pages.invalidate_where(lambda q: q.page > 1 or q.unread_only)

    def add_notification(self, notification: Notification) -> None:
        """实时推送的新通知：插到匹配的第一页最前面，其余页标记过期。"""
        for query in self._pages.cache.keys():
            matches = query.page == 1 and (not query.category or query.category == notification.category)
            if matches:
                self._pages.patch(query, lambda page: _prepend(page, notification))
            else:
                self._pages.invalidate(query)

    def clear_notifications(self) -> None:
        self._pages.clear_all()
        self._current = NotificationQuery(limit=self._page_size)

    # ---- 偏好设置 ----

    async def get_preferences(self) -> NotificationPreferences:
        return await self._preferences.get_or_fetch(PREFERENCES_KEY)

    async def update_preferences(self, preferences: NotificationPreferences) -> NotificationPreferences:
        updated = await self._api.update_notification_preferences(preferences)
        self._preferences.put(PREFERENCES_KEY, updated)
        return updated

    def clear_all(self) -> None:
        self.clear_notifications()
        self._preferences.clear_all()
