"""Tests for the sync engine.

Tests:
- Offline short-circuit
- Upload phase (create/update/delete, orphaned entries, retry ceiling)
- Download phase (last-write-wins, fetch failure, per-pin merge failure)
- Status stream and last sync time
- Single-flight passes
- End-to-end offline edit and concurrent remote edit scenarios
"""

import logging
import threading
import time

import pytest

from carryzone.errors import (
    DeviceOfflineError,
    DownloadFailedError,
    LocalStoreError,
    RemoteError,
    SyncError,
)
from carryzone.network import ConnectivityMonitor, HttpConnectivityMonitor
from carryzone.remote.memory import InMemoryPinDataSource
from carryzone.sync.engine import MAX_RETRIES, SyncEngine
from carryzone.types import Location, Pin, PinStatus, SyncOperation, SyncState, SyncStatus

from conftest import BASE_MS, make_pin, touched


def add_local(store, queue, pin):
    """Write a pin locally and queue its CREATE, as the repository does."""
    store.insert(pin)
    queue.enqueue_create(pin)
    return pin


class TestOfflineShortCircuit:
    def test_offline_pass_does_nothing(self, engine, store, queue, remote, connectivity):
        add_local(store, queue, make_pin("p1"))
        connectivity.set_online(False)

        result = engine.trigger_sync()

        assert not result.success
        assert isinstance(result.error, DeviceOfflineError)
        assert str(result.error) == "Device is offline"
        assert sum(remote.calls.values()) == 0
        assert queue.count() == 1

    def test_offline_status_is_retryable_error(self, engine, connectivity):
        connectivity.set_online(False)

        engine.trigger_sync()

        assert engine.status == SyncStatus.error("Device is offline", retryable=True)

    def test_failing_connectivity_check_counts_as_offline(self, store, queue, remote):
        class BrokenMonitor(ConnectivityMonitor):
            def is_online(self):
                raise RuntimeError("resolver exploded")

        add_local(store, queue, make_pin("p1"))
        engine = SyncEngine(store, queue, remote, BrokenMonitor())

        result = engine.trigger_sync()

        assert not result.success
        assert isinstance(result.error, DeviceOfflineError)
        assert engine.status == SyncStatus.error("Device is offline", retryable=True)
        assert sum(remote.calls.values()) == 0
        assert queue.count() == 1

    def test_unparseable_health_url_does_not_raise(self, store, queue, remote):
        engine = SyncEngine(
            store, queue, remote, HttpConnectivityMonitor("http://[::1", cache_ttl=0)
        )

        result = engine.trigger_sync()

        assert isinstance(result.error, DeviceOfflineError)


class TestUploadPhase:
    def test_upload_then_clear(self, engine, store, queue, remote):
        for i in range(3):
            add_local(store, queue, make_pin(f"p{i}"))

        result = engine.trigger_sync()

        assert result.success
        assert result.uploaded == 3
        assert queue.count() == 0
        assert set(remote.snapshot()) == {"p0", "p1", "p2"}
        assert engine.status == SyncStatus.success(3, 0)

    def test_update_sent_as_update(self, engine, store, queue, remote):
        pin = make_pin("p1")
        remote.insert(pin)
        store.insert(pin)
        changed = touched(pin, BASE_MS + 10, status=PinStatus.NO_GUN)
        store.update(changed)
        queue.enqueue_update(changed)

        result = engine.trigger_sync()

        assert result.uploaded == 1
        assert remote.calls["update"] == 1
        assert remote.snapshot()["p1"].status == PinStatus.NO_GUN

    def test_update_for_pin_missing_remotely_inserts(self, engine, store, queue, remote):
        pin = make_pin("p1")
        store.insert(pin)
        queue.enqueue_create(pin)
        queue.enqueue_update(pin)  # collapses the CREATE into an UPDATE

        result = engine.trigger_sync()

        assert result.uploaded == 1
        assert "p1" in remote
        assert remote.calls["insert"] == 1

    def test_delete_calls_remote_delete(self, engine, queue, remote):
        remote.insert(make_pin("p1"))
        queue.enqueue_delete("p1")

        result = engine.trigger_sync()

        assert result.uploaded == 1
        assert "p1" not in remote
        assert queue.count() == 0

    def test_orphaned_entry_removed_without_remote_call(self, engine, queue, remote):
        queue.enqueue_update(make_pin("gone"))

        result = engine.trigger_sync()

        assert result.success
        assert result.uploaded == 0
        assert result.discarded == 1
        assert remote.write_calls == 0
        assert queue.count() == 0

    def test_failed_entry_stays_queued_with_error(self, engine, store, queue, remote):
        add_local(store, queue, make_pin("p1"))
        remote.fail_next("insert", error=RemoteError("HTTP 503"))

        result = engine.trigger_sync()

        assert result.success
        assert result.still_queued == 1
        assert result.partial_failure
        entry = queue.list_pending()[0]
        assert entry.retry_count == 1
        assert entry.last_error == "HTTP 503"

    def test_retry_ceiling_discards_after_three_failures(self, engine, store, queue, remote):
        add_local(store, queue, make_pin("p1"))
        remote.fail_always("insert")

        for attempt in range(1, MAX_RETRIES):
            engine.trigger_sync()
            assert queue.list_pending()[0].retry_count == attempt

        result = engine.trigger_sync()
        assert result.discarded == 1
        assert queue.count() == 0

        engine.trigger_sync()
        assert queue.count() == 0
        assert remote.calls["insert"] == MAX_RETRIES

    def test_one_failure_does_not_abort_pass(self, engine, store, queue, remote):
        add_local(store, queue, make_pin("p1"))
        add_local(store, queue, make_pin("p2"))
        remote.fail_next("insert")

        result = engine.trigger_sync()

        assert result.uploaded == 1
        assert result.still_queued == 1
        assert [e.pin_id for e in queue.list_pending()] == ["p1"]
        assert "p2" in remote
        assert engine.status.state == SyncState.SUCCESS

    def test_local_store_failure_fails_pass(self, engine, store, queue, monkeypatch):
        add_local(store, queue, make_pin("p1"))

        def broken(pin_id):
            raise LocalStoreError("database disk image is malformed")

        monkeypatch.setattr(store, "get_by_id", broken)

        result = engine.trigger_sync()

        assert isinstance(result.error, LocalStoreError)
        assert engine.status.state == SyncState.ERROR
        assert engine.status.retryable is False
        assert queue.count() == 1


class TestDownloadPhase:
    def test_inserts_pins_missing_locally(self, engine, store, remote):
        remote.insert(make_pin("r1"))
        remote.insert(make_pin("r2"))

        result = engine.trigger_sync()

        assert result.downloaded == 2
        assert store.get_by_id("r1") == make_pin("r1")
        assert engine.status == SyncStatus.success(0, 2)

    def test_remote_newer_overwrites_local(self, engine, store, remote):
        store.insert(make_pin("p1", status=PinStatus.ALLOWED, last_modified=BASE_MS))
        remote.insert(make_pin("p1", status=PinStatus.NO_GUN, last_modified=BASE_MS + 500))

        result = engine.trigger_sync()

        local = store.get_by_id("p1")
        assert result.downloaded == 1
        assert local.status == PinStatus.NO_GUN
        assert local.last_modified == BASE_MS + 500

    @pytest.mark.parametrize("remote_offset", [0, -500])
    def test_local_newer_or_equal_kept(self, engine, store, remote, remote_offset):
        local = make_pin("p1", status=PinStatus.UNCERTAIN, last_modified=BASE_MS)
        store.insert(local)
        remote.insert(
            make_pin("p1", status=PinStatus.NO_GUN, last_modified=BASE_MS + remote_offset)
        )

        result = engine.trigger_sync()

        assert result.downloaded == 0
        assert store.get_by_id("p1") == local

    def test_pin_deleted_during_merge_not_counted(self, engine, store, remote, monkeypatch):
        store.insert(make_pin("p1", last_modified=BASE_MS))
        remote.insert(make_pin("p1", status=PinStatus.NO_GUN, last_modified=BASE_MS + 500))
        original_update = store.update

        def update_after_local_delete(pin):
            store.delete_by_id(pin.id)
            return original_update(pin)

        monkeypatch.setattr(store, "update", update_after_local_delete)

        result = engine.trigger_sync()

        assert result.success
        assert result.downloaded == 0
        assert store.get_by_id("p1") is None

    def test_fetch_failure_fails_pass_but_keeps_uploads(self, engine, store, queue, remote):
        add_local(store, queue, make_pin("p1"))
        remote.fail_next("get_all", error=RemoteError("connection reset"))

        result = engine.trigger_sync()

        assert not result.success
        assert isinstance(result.error, DownloadFailedError)
        assert result.uploaded == 1
        assert "p1" in remote
        assert queue.count() == 0
        assert engine.status == SyncStatus.error("connection reset", retryable=True)

    def test_per_pin_merge_failure_is_skipped(self, engine, store, remote, monkeypatch):
        remote.insert(make_pin("bad"))
        remote.insert(make_pin("good"))
        original_insert = store.insert

        def flaky_insert(pin):
            if pin.id == "bad":
                raise LocalStoreError("constraint failed")
            original_insert(pin)

        monkeypatch.setattr(store, "insert", flaky_insert)

        result = engine.trigger_sync()

        assert result.success
        assert result.downloaded == 1
        assert store.get_by_id("good") is not None
        assert any("bad" in e for e in result.errors)


class TestStatusStream:
    def test_status_sequence_for_successful_pass(self, engine, store, queue):
        add_local(store, queue, make_pin("p1"))
        add_local(store, queue, make_pin("p2"))
        seen = []

        sub = engine.observe_status(seen.append)
        engine.trigger_sync()
        sub.cancel()

        assert seen == [
            SyncStatus.idle(),
            SyncStatus.syncing(2),
            SyncStatus.success(2, 0),
        ]

    def test_last_sync_time(self, store, queue, remote, connectivity):
        engine = SyncEngine(store, queue, remote, connectivity, clock=lambda: 42)
        assert engine.last_sync_time is None

        connectivity.set_online(False)
        engine.trigger_sync()
        assert engine.last_sync_time is None

        connectivity.set_online(True)
        engine.trigger_sync()
        assert engine.last_sync_time == 42


class BlockingRemote(InMemoryPinDataSource):
    """Remote whose get_all blocks until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def get_all(self):
        self.entered.set()
        self.release.wait(5)
        return super().get_all()


class TestSingleFlight:
    def test_concurrent_trigger_joins_inflight_pass(self, store, queue, connectivity, caplog):
        caplog.set_level(logging.DEBUG, logger="carryzone.sync.engine")
        remote = BlockingRemote()
        engine = SyncEngine(store, queue, remote, connectivity)
        results = {}

        first = threading.Thread(target=lambda: results.setdefault("first", engine.trigger_sync()))
        first.start()
        assert remote.entered.wait(5)

        second = threading.Thread(
            target=lambda: results.setdefault("second", engine.trigger_sync())
        )
        second.start()
        deadline = time.monotonic() + 5
        while not any("waiting for its result" in r.getMessage() for r in caplog.records):
            assert time.monotonic() < deadline
            time.sleep(0.01)

        remote.release.set()
        first.join(5)
        second.join(5)

        assert results["first"] is results["second"]
        assert remote.calls["get_all"] == 1

    def test_passes_run_again_after_completion(self, engine, remote):
        engine.trigger_sync()
        engine.trigger_sync()

        assert remote.calls["get_all"] == 2

    def test_trigger_from_status_observer_does_not_deadlock(self, engine):
        nested = []

        def on_status(status):
            if status.state == SyncState.SYNCING:
                nested.append(engine.trigger_sync())

        engine.observe_status(on_status)
        result = engine.trigger_sync()

        assert result.success
        assert len(nested) == 1
        assert isinstance(nested[0].error, SyncError)


class TestEngineQueueAccess:
    def test_enqueue_and_count(self, engine):
        pin = make_pin("p1")
        engine.enqueue_create(pin)
        engine.enqueue_update(pin)
        engine.enqueue_delete("p2")

        assert engine.get_pending_operation_count() == 2

    def test_clear_queue(self, engine):
        engine.enqueue_delete("p1")
        engine.enqueue_delete("p2")

        assert engine.clear_queue() == 2
        assert engine.get_pending_operation_count() == 0

    def test_get_failed_operations(self, engine, store, queue, remote):
        add_local(store, queue, make_pin("p1"))
        add_local(store, queue, make_pin("p2"))
        remote.fail_next("insert")

        engine.trigger_sync()

        failed = engine.get_failed_operations()
        assert [e.pin_id for e in failed] == ["p1"]
        assert failed[0].operation == SyncOperation.CREATE
        assert engine.get_failed_operations(threshold=2) == []


class TestEndToEnd:
    def test_offline_add_then_sync(self, repository, engine, queue, remote, connectivity):
        connectivity.set_online(False)
        pin = repository.add(Pin(location=Location(40.7, -74.0), id="p1"))

        pending = queue.list_pending()
        assert [(e.pin_id, e.operation) for e in pending] == [("p1", SyncOperation.CREATE)]
        assert not engine.trigger_sync().success

        connectivity.set_online(True)
        result = engine.trigger_sync()

        assert result.success
        assert remote.snapshot()["p1"] == pin
        assert queue.count() == 0

    def test_newer_remote_edit_wins_over_uploaded_local_edit(self, store, queue, connectivity):
        original = make_pin("p1", status=PinStatus.ALLOWED)

        class ConcurrentEditRemote(InMemoryPinDataSource):
            """Applies another device's edit just before the download fetch."""

            remote_edit = None

            def get_all(self):
                if self.remote_edit is not None:
                    self._pins[self.remote_edit.id] = self.remote_edit
                return super().get_all()

        remote = ConcurrentEditRemote([original])
        store.insert(original)
        engine = SyncEngine(store, queue, remote, connectivity)

        local_edit = original.with_status(PinStatus.NO_GUN)
        store.update(local_edit)
        queue.enqueue_update(local_edit)
        remote.remote_edit = touched(
            original, local_edit.last_modified + 1000, status=PinStatus.UNCERTAIN
        )

        result = engine.trigger_sync()

        assert result.uploaded == 1
        assert remote.calls["update"] == 1
        final = store.get_by_id("p1")
        assert final.status == PinStatus.UNCERTAIN
        assert final.last_modified == local_edit.last_modified + 1000
