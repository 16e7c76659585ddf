from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from picqer_api.utils import EPOCH_ZERO
from picqer_data.exceptions import InvalidRunTransition
from picqer_data.models import SyncRun, SyncWatermark
from picqer_data.progress import (
    MAX_ERROR_MESSAGE_LENGTH,
    Completed,
    Failed,
    ProgressTracker,
    serialize_run,
)

pytestmark = pytest.mark.django_db

FIXED_TIME = datetime(2023, 11, 14, 22, 13, 19, 999000, tzinfo=timezone.utc)


def test_start_run_creates_in_progress_row_with_timestamped_id() -> None:
    tracker = ProgressTracker(clock=lambda: FIXED_TIME)

    run = tracker.start_run("products")

    assert run.run_id == "products_1699999999999"
    assert run.status == SyncRun.Status.IN_PROGRESS
    assert run.started_at == FIXED_TIME
    assert run.ended_at is None
    assert run.items_synced == 0


def test_start_run_bumps_id_on_same_millisecond_collision() -> None:
    tracker = ProgressTracker(clock=lambda: FIXED_TIME)

    first = tracker.start_run("products")
    second = tracker.start_run("products")
    other_entity = tracker.start_run("users")

    assert first.run_id == "products_1699999999999"
    assert second.run_id == "products_1700000000000"
    assert other_entity.run_id == "users_1699999999999"


def test_finish_completes_run_once() -> None:
    tracker = ProgressTracker(clock=lambda: FIXED_TIME)
    run = tracker.start_run("products")

    tracker.finish(run, Completed(items_synced=237))

    stored = SyncRun.objects.get(run_id=run.run_id)
    assert stored.status == SyncRun.Status.COMPLETED
    assert stored.items_synced == 237
    assert stored.ended_at == FIXED_TIME
    assert stored.error_message is None
    assert stored.is_terminal is True

    with pytest.raises(InvalidRunTransition):
        tracker.finish(run, Failed("late failure"))
    assert SyncRun.objects.get(run_id=run.run_id).status == SyncRun.Status.COMPLETED


def test_finish_failed_records_truncated_error() -> None:
    tracker = ProgressTracker()
    run = tracker.start_run("picklists")

    tracker.finish(run, Failed("x" * (MAX_ERROR_MESSAGE_LENGTH + 50), items_synced=12))

    stored = SyncRun.objects.get(run_id=run.run_id)
    assert stored.status == SyncRun.Status.FAILED
    assert stored.items_synced == 12
    assert len(stored.error_message) == MAX_ERROR_MESSAGE_LENGTH
    assert stored.error_message.endswith("...")


def test_watermark_defaults_to_epoch_zero_and_updates_on_success() -> None:
    tracker = ProgressTracker(clock=lambda: FIXED_TIME)

    assert tracker.last_sync_at("products") == EPOCH_ZERO

    tracker.record_success("products", total_available=240, total_synced=237)
    tracker.record_success("products", total_available=10, total_synced=10)

    watermark = SyncWatermark.objects.get(entity_type="products")
    assert watermark.last_sync_at == FIXED_TIME
    assert watermark.total_available == 10
    assert watermark.total_synced == 10
    assert tracker.last_sync_at("products") == FIXED_TIME
    assert SyncWatermark.objects.count() == 1


def test_history_is_newest_first_and_limited() -> None:
    moments = iter(FIXED_TIME + timedelta(minutes=offset) for offset in range(10))
    tracker = ProgressTracker(clock=lambda: next(moments))

    oldest = tracker.start_run("users")
    middle = tracker.start_run("suppliers")
    newest = tracker.start_run("batches")

    history = tracker.history()
    assert [run.run_id for run in history] == [newest.run_id, middle.run_id, oldest.run_id]
    assert [run.run_id for run in tracker.history(limit=2)] == [newest.run_id, middle.run_id]
    assert [run.run_id for run in tracker.history(entity_type="users")] == [oldest.run_id]


def test_last_terminal_run_ignores_runs_in_progress() -> None:
    moments = iter(FIXED_TIME + timedelta(minutes=offset) for offset in range(10))
    tracker = ProgressTracker(clock=lambda: next(moments))

    finished = tracker.start_run("users")
    tracker.finish(finished, Completed(items_synced=4))
    tracker.start_run("users")

    last_run = tracker.last_terminal_run("users")
    assert last_run is not None
    assert last_run.run_id == finished.run_id
    assert tracker.last_terminal_run("batches") is None


def test_reset_watermarks_keeps_run_history() -> None:
    tracker = ProgressTracker()
    run = tracker.start_run("users")
    tracker.finish(run, Completed(items_synced=1))
    tracker.record_success("users", total_available=1, total_synced=1)
    tracker.record_success("suppliers", total_available=2, total_synced=2)

    assert tracker.reset_watermarks(["users"]) == 1
    assert set(tracker.watermarks()) == {"suppliers"}
    assert tracker.reset_watermarks() == 1
    assert SyncRun.objects.count() == 1


def test_serialize_run_uses_iso_timestamps() -> None:
    tracker = ProgressTracker(clock=lambda: FIXED_TIME)
    run = tracker.finish(tracker.start_run("products"), Failed("TransportError: down", 3))

    assert serialize_run(run) == {
        "run_id": "products_1699999999999",
        "entity_type": "products",
        "status": "failed",
        "started_at": "2023-11-14T22:13:19.999000+00:00",
        "ended_at": "2023-11-14T22:13:19.999000+00:00",
        "items_synced": 3,
        "error_message": "TransportError: down",
    }
