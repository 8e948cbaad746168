"""Tests for real-time change merging."""

from carryzone.remote.supabase import SupabasePinDataSource
from carryzone.sync.engine import SyncEngine
from carryzone.types import PinChangeEvent, PinStatus

from conftest import BASE_MS, make_pin, touched


class TestRealtimeMerge:
    def test_remote_insert_is_stored(self, engine, store, remote):
        messages = []
        sub = engine.start_realtime_subscription(messages.append)

        remote.remote_insert(make_pin("r1"))

        assert store.get_by_id("r1") == make_pin("r1")
        assert messages == ["Realtime subscription started", "Inserted pin r1"]
        sub.cancel()

    def test_insert_for_existing_pin_compares_timestamps(self, engine, store, remote):
        local = make_pin("p1", status=PinStatus.UNCERTAIN, last_modified=BASE_MS + 100)
        store.insert(local)
        engine.start_realtime_subscription()

        remote.remote_insert(make_pin("p1", status=PinStatus.NO_GUN, last_modified=BASE_MS))

        assert store.get_by_id("p1") == local

    def test_newer_update_overwrites(self, engine, store, remote):
        pin = make_pin("p1")
        store.insert(pin)
        engine.start_realtime_subscription()

        remote.remote_update(touched(pin, BASE_MS + 1, status=PinStatus.NO_GUN))

        assert store.get_by_id("p1").status == PinStatus.NO_GUN

    def test_older_or_equal_update_ignored(self, engine, store, remote):
        pin = make_pin("p1", last_modified=BASE_MS + 10)
        store.insert(pin)
        engine.start_realtime_subscription()

        remote.remote_update(touched(pin, BASE_MS + 10, status=PinStatus.NO_GUN))
        remote.remote_update(touched(pin, BASE_MS, status=PinStatus.UNCERTAIN))

        assert store.get_by_id("p1") == pin

    def test_update_for_absent_pin_inserts(self, engine, store, remote):
        messages = []
        engine.start_realtime_subscription(messages.append)

        remote.remote_update(make_pin("new"))

        assert store.get_by_id("new") is not None
        assert messages[-1] == "Updated pin new"

    def test_delete_removes_local_pin(self, engine, store, remote):
        store.insert(make_pin("p1"))
        messages = []
        engine.start_realtime_subscription(messages.append)

        remote.remote_delete("p1")
        remote.remote_delete("never-existed")

        assert store.get_by_id("p1") is None
        assert messages[1:] == ["Deleted pin p1", "Deleted pin never-existed"]

    def test_cancel_stops_merging(self, engine, store, remote):
        sub = engine.start_realtime_subscription()
        sub.cancel()

        remote.remote_insert(make_pin("late"))

        assert store.get_by_id("late") is None

    def test_merge_failure_reported_to_listener(self, engine, store, remote, monkeypatch):
        def broken(pin_id):
            raise RuntimeError("locked")

        monkeypatch.setattr(store, "get_by_id", broken)
        messages = []
        engine.start_realtime_subscription(messages.append)

        remote.remote_insert(make_pin("p1"))

        assert messages[-1] == "Error applying change for pin p1: locked"

    def test_apply_change_directly(self, engine, store):
        assert engine.apply_change(PinChangeEvent.insert(make_pin("p1"))) == "Inserted pin p1"
        assert store.count() == 1


class TestInertTransport:
    def test_supabase_subscription_is_inert(self, store, queue, connectivity, mock_supabase_client):
        remote = SupabasePinDataSource(mock_supabase_client)
        engine = SyncEngine(store, queue, remote, connectivity)
        messages = []

        sub = engine.start_realtime_subscription(messages.append)

        assert messages == ["Realtime subscription started"]
        assert store.count() == 0
        sub.cancel()
        assert not sub.active
