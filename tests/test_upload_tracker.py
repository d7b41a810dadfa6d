from __future__ import annotations

import pytest

from portal.errors import UsageError
from portal.uploads.tracker import UploadStatus
from portal.uploads.tracker import UploadTracker


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _tracker(clock: FakeClock, grace: float = 3.0) -> UploadTracker:
    return UploadTracker(grace_seconds=grace, clock=clock, id_clock=lambda: 1_000)


def test_begin_creates_uploading_task() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 3)
    task = tracker.get(task_id)
    assert task is not None
    assert task_id.startswith("proj1_")
    assert task.status is UploadStatus.UPLOADING
    assert task.progress_percent == 0
    assert task.total_files == 3
    assert task.completed_files == 0


def test_same_tick_begins_get_unique_ids() -> None:
    tracker = _tracker(FakeClock())
    first = tracker.begin("proj1", 1)
    second = tracker.begin("proj1", 1)
    assert first != second
    assert {t.id for t in tracker.active()} == {first, second}


@pytest.mark.parametrize("resource_id,count", [("", 1), ("proj1", 0)])
def test_begin_rejects_invalid_arguments(resource_id: str, count: int) -> None:
    with pytest.raises(UsageError):
        _tracker(FakeClock()).begin(resource_id, count)


def test_progress_never_regresses_and_completes_at_100() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 3)
    tracker.report_progress(task_id, 40)
    tracker.report_progress(task_id, 30)
    task = tracker.get(task_id)
    assert task is not None and task.progress_percent == 40

    done = tracker.complete(task_id)
    assert done.status is UploadStatus.COMPLETED
    assert done.progress_percent == 100
    assert done.completed_files == 3


def test_progress_is_clamped() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 1)
    assert tracker.report_progress(task_id, -10) == 0
    assert tracker.report_progress(task_id, 250) == 100


def test_fail_freezes_progress() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 2)
    tracker.report_progress(task_id, 55)
    failed = tracker.fail(task_id, "File too large")
    assert failed.status is UploadStatus.ERROR
    assert failed.progress_percent == 55
    assert failed.error_message == "File too large"
    with pytest.raises(UsageError):
        tracker.report_progress(task_id, 80)
    task = tracker.get(task_id)
    assert task is not None and task.progress_percent == 55


def test_terminal_transition_happens_once() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 1)
    tracker.complete(task_id)
    with pytest.raises(UsageError):
        tracker.fail(task_id, "late failure")
    with pytest.raises(UsageError):
        tracker.complete(task_id)


def test_unknown_task_is_a_usage_error() -> None:
    tracker = _tracker(FakeClock())
    with pytest.raises(UsageError):
        tracker.report_progress("missing", 10)
    assert tracker.get("missing") is None


def test_tasks_progress_independently() -> None:
    tracker = _tracker(FakeClock())
    a = tracker.begin("proj1", 1)
    b = tracker.begin("proj2", 1)
    tracker.report_progress(a, 70)
    tracker.report_progress(b, 10)
    tracker.fail(b, "boom")
    task_a = tracker.get(a)
    assert task_a is not None
    assert task_a.progress_percent == 70
    assert task_a.status is UploadStatus.UPLOADING


def test_mark_file_completed_is_bounded() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 2)
    tracker.mark_file_completed(task_id)
    tracker.mark_file_completed(task_id)
    assert tracker.mark_file_completed(task_id) == 2


def test_cleanup_never_removes_uploading_tasks() -> None:
    clock = FakeClock()
    tracker = _tracker(clock)
    active = tracker.begin("proj1", 1)
    clock.now = 1_000.0
    assert tracker.cleanup(force=True) == []
    assert tracker.get(active) is not None


def test_cleanup_respects_grace_window() -> None:
    clock = FakeClock()
    tracker = _tracker(clock, grace=3.0)
    done = tracker.begin("proj1", 1)
    failed = tracker.begin("proj1", 1)
    active = tracker.begin("proj1", 1)
    tracker.complete(done)
    tracker.fail(failed, "boom")

    clock.now = 2.0
    assert tracker.cleanup() == []
    assert tracker.get(done) is not None

    clock.now = 3.0
    assert sorted(tracker.cleanup()) == sorted([done, failed])
    assert tracker.get(done) is None
    assert tracker.get(failed) is None
    assert tracker.get(active) is not None

    assert tracker.cleanup() == []


def test_cleanup_force_ignores_grace_window() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 1)
    tracker.complete(task_id)
    assert tracker.cleanup(force=True) == [task_id]


def test_get_returns_a_copy() -> None:
    tracker = _tracker(FakeClock())
    task_id = tracker.begin("proj1", 1)
    snapshot = tracker.get(task_id)
    assert snapshot is not None
    snapshot.progress_percent = 99
    task = tracker.get(task_id)
    assert task is not None and task.progress_percent == 0
