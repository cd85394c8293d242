from datetime import datetime, timedelta, timezone

import pytest

from storefront_sync.exceptions import SyncInProgressError
from storefront_sync.models import SyncStatus
from storefront_sync.services.sync_status import (
    SyncStatusRecorder,
    compute_percent,
    get_status,
    list_statuses,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    "total, processed, expected",
    [(0, 0, 0), (0, 5, 0), (3, 1, 33), (3, 2, 66), (10, 10, 100), (200, 1, 0)],
)
def test_compute_percent(total, processed, expected):
    assert compute_percent(total, processed) == expected


@pytest.mark.integration
class TestSyncStatusRecorder:
    def test_unknown_entity(self, test_session):
        with pytest.raises(ValueError):
            SyncStatusRecorder(test_session, "orders")

    def test_lifecycle(self, test_session):
        recorder = SyncStatusRecorder(test_session, "products")
        recorder.start(0, "Starting sync...")

        row = get_status(test_session, "products")
        assert row.status == "running"
        assert row.started_at is not None
        assert row.finished_at is None

        recorder.progress(25, total=100, message="Processing products... 25/100")
        row = get_status(test_session, "products")
        assert (row.total, row.processed, row.percent) == (100, 25, 25)
        assert row.message == "Processing products... 25/100"

        recorder.succeed(80, "Synced 80 products, removed 0 (zero stock), 0 (orphaned)", total=100)
        row = get_status(test_session, "products")
        assert row.status == "success"
        assert row.percent == 100
        assert row.records_synced == 80
        assert row.last_sync_at is not None
        assert row.finished_at is not None

    def test_processed_never_decreases(self, test_session):
        recorder = SyncStatusRecorder(test_session, "categories")
        recorder.start(10)
        recorder.progress(7)
        recorder.progress(3)
        assert get_status(test_session, "categories").processed == 7

    def test_fail_keeps_counters(self, test_session):
        recorder = SyncStatusRecorder(test_session, "products")
        recorder.start(0)
        recorder.progress(40, total=100)
        recorder.fail("MoySklad error: 500 boom")

        row = get_status(test_session, "products")
        assert row.status == "error"
        assert row.message == "MoySklad error: 500 boom"
        assert (row.total, row.processed, row.percent) == (100, 40, 40)
        assert row.finished_at is not None
        assert row.last_sync_at is None

    def test_one_row_per_entity(self, test_session):
        for entity in ("categories", "products", "categories"):
            recorder = SyncStatusRecorder(test_session, entity)
            recorder.start(0)
            recorder.succeed(0, "done", total=0)
        rows = list_statuses(test_session)
        assert [r.entity for r in rows] == ["categories", "products"]


@pytest.mark.integration
class TestSyncLease:
    def _running_row(self, session, updated_at):
        session.add(SyncStatus(entity="products", status="running", updated_at=updated_at))
        session.commit()

    def test_acquire_without_row(self, test_session):
        SyncStatusRecorder(test_session, "products").acquire()

    def test_acquire_rejects_fresh_running_row(self, test_session):
        self._running_row(test_session, datetime.now(timezone.utc))
        with pytest.raises(SyncInProgressError) as excinfo:
            SyncStatusRecorder(test_session, "products").acquire()
        assert excinfo.value.http_status == 409

    def test_acquire_takes_over_stale_row(self, test_session):
        self._running_row(test_session, datetime.now(timezone.utc) - timedelta(hours=3))
        recorder = SyncStatusRecorder(test_session, "products")
        recorder.acquire()
        recorder.start(0, "Starting sync...")
        assert get_status(test_session, "products").status == "running"

    def test_acquire_after_terminal_state(self, test_session):
        recorder = SyncStatusRecorder(test_session, "products")
        recorder.start(0)
        recorder.fail("boom")
        SyncStatusRecorder(test_session, "products").acquire()
