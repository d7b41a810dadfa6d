from __future__ import annotations

import asyncio

import httpx
import pytest

from portal.api.client import PortalApiClient
from portal.api.schemas import Notification
from portal.dev.mock_api_server import MockState
from portal.dev.mock_api_server import build_default_state
from portal.dev.mock_api_server import build_mock_app
from portal.stores.notifications import NotificationStore

BASE_URL = "http://portal.test/api"


def _store(state: MockState, page_size: int = 20) -> tuple[NotificationStore, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=build_mock_app(state)))
    api = PortalApiClient(base_url=BASE_URL, http_client=http_client)
    return NotificationStore(api=api, ttl_seconds=60, page_size=page_size, clock=lambda: 0.0), http_client


def test_notifications_are_cached_per_query() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            page = await store.get_notifications()
            assert [n.id for n in page.notifications] == ["n3", "n2", "n1"]
            assert store.unread_count == 2
            await store.get_notifications()
            unread = await store.filter_notifications(unread_only=True)
            assert [n.id for n in unread.notifications] == ["n3", "n1"]
            assert store.current_query.unread_only

    asyncio.run(scenario())
    assert state.request_counts["notifications"] == 2


def test_mark_as_read_patches_current_page() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            await store.get_notifications()
            await store.mark_as_read("n1")
            n1 = store.get_notification_by_id("n1")
            assert n1 is not None and n1.isRead and n1.readAt
            assert store.unread_count == 1
            assert [n.id for n in store.get_unread_notifications()] == ["n3"]
            # marking an already-read notification does not double count
            await store.mark_as_read("n1")
            assert store.unread_count == 1

    asyncio.run(scenario())
    assert state.request_counts["notifications"] == 1
    assert state.notifications["n1"]["isRead"] is True


def test_unread_only_pages_are_invalidated_after_read() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            await store.get_notifications(unread_only=True)
            await store.mark_as_read("n3")
            entry = store.current_entry()
            assert entry is not None and entry.last_fetched_at is None
            page = await store.get_notifications(unread_only=True)
            assert [n.id for n in page.notifications] == ["n1"]

    asyncio.run(scenario())
    assert state.request_counts["notifications"] == 2


def test_mark_all_as_read() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state())
        async with http_client:
            await store.get_notifications()
            assert await store.mark_all_as_read() == 2
            assert store.unread_count == 0
            assert store.get_unread_notifications() == []

    asyncio.run(scenario())


def test_delete_notification_updates_counts() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            page = await store.get_notifications()
            assert page.pagination.totalNotifications == 3
            await store.delete_notification("n3")
            current = store.current_page()
            assert current is not None
            assert [n.id for n in current.notifications] == ["n2", "n1"]
            assert current.unreadCount == 1
            assert current.pagination.totalNotifications == 2

    asyncio.run(scenario())
    assert "n3" not in state.notifications


def test_later_pages_are_invalidated_after_delete() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, page_size=2)
        async with http_client:
            await store.get_notifications()
            second = await store.go_to_page(2)
            assert [n.id for n in second.notifications] == ["n1"]
            await store.delete_notification("n3")
            entry = store.current_entry()
            assert entry is not None and entry.last_fetched_at is None

    asyncio.run(scenario())


def test_pushed_notification_is_prepended_to_first_page() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state())
        async with http_client:
            await store.get_notifications(category="system")
            await store.get_notifications()
            pushed = Notification(id="n9", title="New review", category="project")
            store.add_notification(pushed)
            store.add_notification(pushed)

            current = store.current_page()
            assert current is not None
            assert current.notifications[0].id == "n9"
            assert sum(1 for n in current.notifications if n.id == "n9") == 1
            assert store.unread_count == 3
            assert [n.id for n in store.get_notifications_by_category("project")] == ["n9", "n3", "n1"]

            system = await store.filter_notifications(category="system")
            assert "n9" not in {n.id for n in system.notifications}

    asyncio.run(scenario())


def test_preferences_are_cached_and_replaced_on_update() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            prefs = await store.get_preferences()
            assert prefs.email.projectStatusChange
            changed = prefs.model_copy(update={"push": prefs.push.model_copy(update={"enabled": True})})
            updated = await store.update_preferences(changed)
            assert updated.push.enabled
            assert (await store.get_preferences()).push.enabled

    asyncio.run(scenario())
    assert state.request_counts["preferences"] == 1
    assert state.preferences["push"]["enabled"] is True


def test_invalid_page_size_and_page() -> None:
    with pytest.raises(ValueError):
        _store(build_default_state(), page_size=0)

    async def scenario() -> None:
        store, http_client = _store(build_default_state())
        async with http_client:
            with pytest.raises(ValueError):
                await store.get_notifications(page=0)

    asyncio.run(scenario())


def test_refresh_bypasses_fresh_page() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state)
        async with http_client:
            await store.get_notifications()
            state.notifications["n1"]["isRead"] = True
            page = await store.refresh_notifications()
            assert page.unreadCount == 1
            assert store.unread_count == 1

    asyncio.run(scenario())
    assert state.request_counts["notifications"] == 2


def test_clear_notifications_resets_query() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state())
        async with http_client:
            await store.filter_notifications(category="system")
            store.clear_notifications()
            assert store.current_page() is None
            assert store.current_query.category == ""
            assert store.unread_count == 0

    asyncio.run(scenario())
