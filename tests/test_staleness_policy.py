from __future__ import annotations

import pytest

from portal.cache.entry import CacheEntry
from portal.cache.entry import FetchStatus
from portal.cache.entry import StalenessPolicy


def test_policy_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        StalenessPolicy(ttl_seconds=0)
    with pytest.raises(ValueError):
        StalenessPolicy(ttl_seconds=-5)


def test_missing_entry_is_stale() -> None:
    policy = StalenessPolicy(ttl_seconds=120)
    assert policy.is_stale(None, now=0.0)


def test_entry_without_data_is_stale() -> None:
    policy = StalenessPolicy(ttl_seconds=120)
    entry: CacheEntry[str, int] = CacheEntry(key="k", last_fetched_at=0.0)
    assert not policy.is_fresh(entry, now=1.0)


def test_fresh_until_ttl_elapses() -> None:
    policy = StalenessPolicy(ttl_seconds=120)
    entry: CacheEntry[str, int] = CacheEntry(key="k")
    entry.store(1, fetched_at=0.0)
    assert policy.is_fresh(entry, now=60.0)
    assert policy.is_fresh(entry, now=119.9)
    assert policy.is_stale(entry, now=120.0)


def test_invalidate_makes_entry_stale_but_keeps_data() -> None:
    policy = StalenessPolicy(ttl_seconds=120)
    entry: CacheEntry[str, int] = CacheEntry(key="k")
    entry.store(7, fetched_at=0.0)
    entry.invalidate()
    assert policy.is_stale(entry, now=1.0)
    assert entry.data == 7
    assert entry.has_data


def test_mark_error_keeps_previous_data() -> None:
    entry: CacheEntry[str, int] = CacheEntry(key="k")
    entry.store(3, fetched_at=0.0)
    entry.mark_error("boom")
    assert entry.status is FetchStatus.ERROR
    assert entry.error_message == "boom"
    assert entry.data == 3


def test_mark_error_always_has_message() -> None:
    entry: CacheEntry[str, int] = CacheEntry(key="k")
    entry.mark_error("")
    assert entry.error_message
