from __future__ import annotations

import asyncio

import httpx
import pytest

from portal.api.client import PortalApiClient
from portal.cache.snapshot import InMemorySnapshotStore
from portal.dev.mock_api_server import MockState
from portal.dev.mock_api_server import build_default_state
from portal.dev.mock_api_server import build_mock_app
from portal.stores.admin import AdminStore
from portal.stores.admin import ListQuery
from portal.stores.project_filter import ProjectFilter

BASE_URL = "http://portal.test/api"


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _store(state: MockState, clock: FakeClock) -> tuple[AdminStore, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=build_mock_app(state)))
    api = PortalApiClient(base_url=BASE_URL, http_client=http_client)
    store = AdminStore(
        api=api,
        file_statistics_ttl_seconds=300,
        dashboard_stats_ttl_seconds=600,
        list_ttl_seconds=120,
        clock=clock,
    )
    return store, http_client


def test_list_query_normalizes_filters() -> None:
    a = ListQuery.build(page=1, limit=10, filters={"status": "pending", "search": ""})
    b = ListQuery.build(page=1, limit=10, filters={"status": "pending"})
    assert a == b
    assert hash(a) == hash(b)
    assert a.filter_dict() == {"status": "pending"}
    with pytest.raises(ValueError):
        ListQuery.build(page=0)


def test_statistics_use_their_own_ttls() -> None:
    state = build_default_state()
    clock = FakeClock()

    async def scenario() -> None:
        store, http_client = _store(state, clock)
        async with http_client:
            await store.get_file_statistics()
            await store.get_dashboard_stats()
            clock.now = 400.0
            await store.get_file_statistics()
            await store.get_dashboard_stats()

    asyncio.run(scenario())
    assert state.request_counts["file-statistics"] == 2
    assert state.request_counts["dashboard-stats"] == 1


def test_project_pages_are_cached_per_filter() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            everything = await store.get_projects(page=1, limit=10)
            pending = await store.get_projects(page=1, limit=10, filters={"status": "pending"})
            again = await store.get_projects(page=1, limit=10)
            assert everything is again
            assert {p.status for p in pending.items} == {"pending"}
            assert everything.pagination.total == 3

    asyncio.run(scenario())
    assert state.request_counts["projects"] == 2


def test_status_update_patches_pages_and_invalidates_stats() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects(page=1, limit=10)
            stats = await store.get_dashboard_stats()
            assert stats.projects.approved == 1

            await store.update_project_status("p1", "approved", "Looks good")

            page_entry = store.projects_entry(page=1, limit=10)
            assert page_entry is not None and page_entry.data is not None
            patched = next(p for p in page_entry.data.items if p.id == "p1")
            assert patched.status == "approved"
            assert patched.reviewComment == "Looks good"

            entry = store.dashboard_stats_entry()
            assert entry is not None and entry.last_fetched_at is None
            stats = await store.get_dashboard_stats()
            assert stats.projects.approved == 2

    asyncio.run(scenario())
    assert state.request_counts["dashboard-stats"] == 2


def test_delete_project_removes_it_from_cached_pages() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects(page=1, limit=10)
            await store.get_file_statistics()
            await store.delete_project("p1")

            entry = store.projects_entry(page=1, limit=10)
            assert entry is not None
            assert entry.data is not None
            assert "p1" not in {p.id for p in entry.data.items}
            assert entry.data.pagination.total == 2
            assert entry.last_fetched_at is None

            stats_entry = store.file_statistics_entry()
            assert stats_entry is not None and stats_entry.last_fetched_at is None

            refreshed = await store.get_projects(page=1, limit=10)
            assert refreshed.pagination.total == 2

    asyncio.run(scenario())


def test_bulk_update_patches_only_successful_projects() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects(page=1, limit=10)
            result = await store.bulk_update_projects(["p1", "nope"], action="updateStatus", status="rejected")
            assert result.summary.successful == 1
            assert [f.projectId for f in result.results.failed] == ["nope"]

            entry = store.projects_entry(page=1, limit=10)
            assert entry is not None and entry.data is not None
            statuses = {p.id: p.status for p in entry.data.items}
            assert statuses["p1"] == "rejected"
            assert statuses["p2"] == "approved"

    asyncio.run(scenario())
    assert state.projects["p1"]["status"] == "rejected"


def test_bulk_delete() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects(page=1, limit=10)
            await store.bulk_update_projects(["p1", "p2"], action="delete")
            entry = store.projects_entry(page=1, limit=10)
            assert entry is not None and entry.data is not None
            assert [p.id for p in entry.data.items] == ["p3"]

    asyncio.run(scenario())
    assert set(state.projects) == {"p3"}


@pytest.mark.parametrize(
    "ids,action,status",
    [([], "delete", None), (["p1"], "archive", None), (["p1"], "updateStatus", None)],
)
def test_bulk_update_rejects_bad_arguments(ids: list[str], action: str, status: str | None) -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state(), FakeClock())
        async with http_client:
            with pytest.raises(ValueError):
                await store.bulk_update_projects(ids, action=action, status=status)

    asyncio.run(scenario())


def test_project_view_filters_cached_projects() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            view = await store.get_project_view(ProjectFilter(student="alice", sort_by="title", sort_order="asc"))
            assert [p.title for p in view.items] == ["Robot Arm", "Smart Campus"]
            assert view.filtered_total == 2
            assert view.total == 3
            await store.get_project_view(ProjectFilter(status="approved"))

    asyncio.run(scenario())
    assert state.request_counts["projects"] == 1


def test_users_are_paginated() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state(), FakeClock())
        async with http_client:
            page = await store.get_users(page=1, limit=2)
            assert len(page.items) == 2
            assert page.pagination.totalPages == 2
            teachers = await store.get_users(filters={"role": "teacher"})
            assert [u.id for u in teachers.items] == ["t1"]

    asyncio.run(scenario())


def test_statistics_survive_restart_via_snapshot() -> None:
    snapshots = InMemorySnapshotStore()
    clock = FakeClock(now=100.0)

    async def scenario() -> None:
        store, http_client = _store(build_default_state(), clock)
        async with http_client:
            await store.get_file_statistics()
            await store.get_dashboard_stats()
            await store.get_projects()
            store.persist(snapshots)

        state = build_default_state()
        restored, other_client = _store(state, clock)
        async with other_client:
            assert restored.restore(snapshots) == 2
            await restored.get_file_statistics()
            await restored.get_dashboard_stats()
            await restored.get_projects()
        assert "file-statistics" not in state.request_counts
        assert state.request_counts["projects"] == 1

    asyncio.run(scenario())


def test_clear_all_drops_every_cache() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state(), FakeClock())
        async with http_client:
            await store.get_file_statistics()
            await store.get_projects()
            store.clear_all()
            assert store.file_statistics_entry() is None
            assert store.projects_entry() is None

    asyncio.run(scenario())
