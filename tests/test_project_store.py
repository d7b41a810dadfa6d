from __future__ import annotations

import asyncio

import httpx
import pytest
from pydantic import ValidationError

from portal.api.client import PortalApiClient
from portal.api.schemas import ProjectDraft
from portal.dev.mock_api_server import MockState
from portal.dev.mock_api_server import build_default_state
from portal.dev.mock_api_server import build_mock_app
from portal.errors import ApiError
from portal.stores.projects import ProjectStore

BASE_URL = "http://portal.test/api"


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _store(state: MockState, clock: FakeClock) -> tuple[ProjectStore, httpx.AsyncClient]:
    http_client = httpx.AsyncClient(transport=httpx.ASGITransport(app=build_mock_app(state)))
    api = PortalApiClient(base_url=BASE_URL, http_client=http_client)
    return ProjectStore(api=api, ttl_seconds=120, clock=clock), http_client


def _draft(title: str = "Solar Bench") -> ProjectDraft:
    return ProjectDraft(
        title=title,
        description="Bench that charges phones",
        supervisorId="t1",
        sustainability="Affordable and clean energy",
    )


def test_projects_are_cached_within_ttl() -> None:
    state = build_default_state()
    clock = FakeClock()

    async def scenario() -> None:
        store, http_client = _store(state, clock)
        async with http_client:
            projects = await store.get_projects()
            assert [p.id for p in projects] == ["p3", "p1"]
            clock.now = 60.0
            await store.get_projects()
            clock.now = 200.0
            await store.get_projects()

    asyncio.run(scenario())
    assert state.request_counts["my-projects"] == 2


def test_create_prepends_and_invalidates() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects()
            created = await store.create_project(_draft())
            assert created.status == "pending"
            assert created.createdBy == "u1"

            cached = store.get()
            assert cached is not None
            assert [p.id for p in cached] == [created.id, "p3", "p1"]
            entry = store.projects_entry()
            assert entry is not None and entry.last_fetched_at is None

            projects = await store.get_projects()
            assert [p.id for p in projects] == [created.id, "p3", "p1"]

    asyncio.run(scenario())
    assert state.request_counts["my-projects"] == 2


def test_create_before_first_load_does_not_invent_a_list() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state(), FakeClock())
        async with http_client:
            await store.create_project(_draft())
            assert store.get() is None

    asyncio.run(scenario())


def test_draft_validation_happens_before_request() -> None:
    with pytest.raises(ValidationError):
        ProjectDraft(title="", description="d", supervisorId="t1", sustainability="s")
    with pytest.raises(ValidationError):
        ProjectDraft(
            title="t",
            description="d",
            supervisorId="t1",
            sustainability="s",
            students=["a", "b", "c", "d", "e"],
        )


def test_delete_patches_cached_list() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects()
            await store.delete_project("p1")
            cached = store.get()
            assert cached is not None
            assert [p.id for p in cached] == ["p3"]
            entry = store.projects_entry()
            assert entry is not None and entry.last_fetched_at is None

    asyncio.run(scenario())
    assert "p1" not in state.projects


def test_deleting_someone_elses_project_leaves_cache_alone() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            await store.get_projects()
            with pytest.raises(ApiError) as exc_info:
                await store.delete_project("p2")
            assert exc_info.value.status_code == 403
            assert exc_info.value.message == "Not authorized to delete this project"
            entry = store.projects_entry()
            assert entry is not None and entry.last_fetched_at == 0.0
            assert [p.id for p in entry.data or []] == ["p3", "p1"]

    asyncio.run(scenario())
    assert "p2" in state.projects


def test_search_is_cached_per_query_and_invalidated_by_writes() -> None:
    state = build_default_state()

    async def scenario() -> None:
        store, http_client = _store(state, FakeClock())
        async with http_client:
            robots = await store.search_projects(filters={"q": "robot"})
            assert [p.id for p in robots.items] == ["p3"]
            everything = await store.search_projects(filters={"q": "", "status": ""})
            assert [p.id for p in everything.items] == ["p3", "p1"]
            assert everything.pagination.total == 2
            await store.search_projects()
            assert state.request_counts["my-project-search"] == 2

            await store.delete_project("p3")
            patched = store.search_entry(filters={"q": "robot"})
            assert patched is not None
            assert patched.last_fetched_at is None
            assert patched.data is not None and patched.data.items == []
            assert patched.data.pagination.total == 0

            fresh = await store.search_projects()
            assert [p.id for p in fresh.items] == ["p1"]

    asyncio.run(scenario())
    assert state.request_counts["my-project-search"] == 3


def test_clear_all_drops_list_and_searches() -> None:
    async def scenario() -> None:
        store, http_client = _store(build_default_state(), FakeClock())
        async with http_client:
            await store.get_projects()
            await store.search_projects(filters={"status": "pending"})
            store.clear_all()
            assert store.get() is None
            assert store.projects_entry() is None
            assert store.search_entry(filters={"status": "pending"}) is None

    asyncio.run(scenario())
