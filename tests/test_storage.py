#!/usr/bin/env python3
"""Tests for LocalStorage and LocalProvider."""

import json
import threading

import pytest
import yaml

from fleet import (
    FleetEvents,
    LocalProvider,
    LocalStorage,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
)
from fleet.storage import ALERTS, CARS, MAINTENANCE, PLANS, guide_key


def make_provider(tmp_path, quota_bytes=None):
    events = FleetEvents()
    storage = LocalStorage(tmp_path / "store.yaml", quota_bytes=quota_bytes)
    return LocalProvider(storage, events), storage, events


def collect(signal):
    """Record every send of a blinker signal."""
    received = []

    def receiver(sender, **kwargs):
        received.append(kwargs)

    signal.connect(receiver, weak=False)
    return received


def run_threads(target, count):
    threads = [threading.Thread(target=target, args=(n,)) for n in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


# =============================================================================
# LocalStorage
# =============================================================================


class TestLocalStorage:
    """Tests for the string key/value store."""

    def test_values_persist_to_file(self, tmp_path):
        """Test a value written by one instance is read by the next."""
        path = tmp_path / "store.yaml"
        LocalStorage(path).set_item("auth_token", "abc")

        assert LocalStorage(path).get_item("auth_token") == "abc"
        with open(path) as f:
            assert yaml.safe_load(f) == {"auth_token": "abc"}

    def test_set_items_none_removes(self, tmp_path):
        """Test a None value in a batch removes the key."""
        storage = LocalStorage(tmp_path / "store.yaml")
        storage.set_items({"a": "1", "b": "2"})
        storage.set_items({"a": None, "c": "3"})
        assert sorted(storage.keys()) == ["b", "c"]

    def test_memory_only_without_path(self):
        """Test storage without a path keeps values in memory."""
        storage = LocalStorage()
        storage.set_item("x", "1")
        assert storage.get_item("x") == "1"
        storage.clear()
        assert storage.keys() == []

    def test_quota_exceeded_leaves_content_unchanged(self, tmp_path):
        """Test a write over the quota fails and leaves memory and file as they were."""
        path = tmp_path / "store.yaml"
        storage = LocalStorage(path, quota_bytes=20)
        storage.set_item("k", "small")

        with pytest.raises(StorageWriteError):
            storage.set_item("big", "x" * 100)

        assert storage.get_item("big") is None
        assert LocalStorage(path).keys() == ["k"]

    def test_unreadable_file_raises(self, tmp_path):
        """Test malformed YAML is reported as a read error."""
        path = tmp_path / "store.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(StorageReadError):
            LocalStorage(path)

    def test_concurrent_writes_keep_every_key(self):
        """Test writers on several threads never drop each other's keys."""
        storage = LocalStorage()

        def write(n):
            for i in range(50):
                storage.set_item(f"key-{n}-{i}", "v")

        run_threads(write, 8)

        assert len(storage.keys()) == 400


# =============================================================================
# LocalProvider collections
# =============================================================================


class TestLocalProviderCollections:
    """Tests for collection CRUD over JSON arrays."""

    def test_insert_and_load(self, tmp_path):
        """Test an inserted record is stored as a JSON array under its key."""
        provider, storage, _ = make_provider(tmp_path)
        provider.insert(CARS, {"id": "c1", "brand": "Honda"})

        assert provider.load(CARS) == [{"id": "c1", "brand": "Honda"}]
        assert json.loads(storage.get_item("cars")) == [{"id": "c1", "brand": "Honda"}]

    def test_collection_keys(self, tmp_path):
        """Test alerts and maintenance entries use their own storage keys."""
        provider, storage, _ = make_provider(tmp_path)
        provider.insert(ALERTS, {"id": "a1"})
        provider.insert(MAINTENANCE, {"id": "m1", "carId": "c1"})
        assert storage.get_item("fleet-alerts") is not None
        assert storage.get_item("in-maintenance") is not None

    def test_update_merges(self, tmp_path):
        """Test update merges changes into the stored record."""
        provider, _, _ = make_provider(tmp_path)
        provider.insert(CARS, {"id": "c1", "brand": "Honda", "mileage": 1})
        provider.update(CARS, "c1", {"mileage": 2})
        assert provider.get(CARS, "c1") == {"id": "c1", "brand": "Honda", "mileage": 2}

    def test_update_missing_raises(self, tmp_path):
        """Test updating an unknown id raises NotFoundError."""
        provider, _, _ = make_provider(tmp_path)
        with pytest.raises(NotFoundError):
            provider.update(CARS, "nope", {})

    def test_upsert_replaces_or_appends(self, tmp_path):
        """Test upsert replaces a record with the same id and appends new ones."""
        provider, _, _ = make_provider(tmp_path)
        provider.upsert(PLANS, {"id": "p1", "notes": "a"})
        provider.upsert(PLANS, {"id": "p1", "notes": "b"})
        provider.upsert(PLANS, {"id": "p2"})
        assert provider.load(PLANS) == [{"id": "p1", "notes": "b"}, {"id": "p2"}]

    def test_delete_where_counts(self, tmp_path):
        """Test delete_where removes matching records and returns the count."""
        provider, _, _ = make_provider(tmp_path)
        provider.insert(MAINTENANCE, {"id": "m1", "carId": "c1"})
        provider.insert(MAINTENANCE, {"id": "m2", "carId": "c2"})
        assert provider.delete_where(MAINTENANCE, "carId", "c1") == 1
        assert provider.delete_where(MAINTENANCE, "carId", "c1") == 0
        assert [r["id"] for r in provider.load(MAINTENANCE)] == ["m2"]

    def test_data_changed_event(self, tmp_path):
        """Test a collection write emits data_changed with the collection name."""
        provider, _, events = make_provider(tmp_path)
        received = collect(events.data_changed)
        provider.insert(CARS, {"id": "c1"})
        assert received == [{"collection": CARS}]

    def test_blobs(self, tmp_path):
        """Test per-car blobs can be saved, read and removed."""
        provider, _, _ = make_provider(tmp_path)
        provider.save_blob(guide_key("c1"), {"carId": "c1", "regulations": []})
        assert provider.load_blob(guide_key("c1")) == {"carId": "c1", "regulations": []}
        provider.remove_blob(guide_key("c1"))
        assert provider.load_blob(guide_key("c1")) is None

    def test_concurrent_inserts_keep_every_record(self, tmp_path):
        """Test inserts from several threads all end up in the collection."""
        provider, _, _ = make_provider(tmp_path)

        def insert(n):
            for i in range(10):
                provider.insert(ALERTS, {"id": f"a{n}-{i}"})

        run_threads(insert, 4)

        assert len(provider.load(ALERTS)) == 40


class TestLocalProviderErrors:
    """Tests for corrupt reads and failed writes."""

    def test_corrupt_key_is_reset_and_reported(self, tmp_path):
        """Test invalid JSON is reset to an empty array and storage_error is sent."""
        provider, storage, events = make_provider(tmp_path)
        storage.set_item("fleet-alerts", "{not json")
        errors = collect(events.storage_error)

        assert provider.load(ALERTS) == []
        assert storage.get_item("fleet-alerts") == "[]"
        assert len(errors) == 1
        assert isinstance(errors[0]["error"], StorageReadError)

    def test_non_array_value_is_reset(self, tmp_path):
        """Test an object where an array belongs is treated as corrupt."""
        provider, storage, _ = make_provider(tmp_path)
        storage.set_item("cars", '{"id": "c1"}')
        assert provider.load(CARS) == []
        assert storage.get_item("cars") == "[]"

    def test_non_object_element_is_reset(self, tmp_path):
        """Test an array holding something other than records is treated as corrupt."""
        provider, storage, events = make_provider(tmp_path)
        storage.set_item("fleet-alerts", '[{"id": "a1"}, "garbage"]')
        errors = collect(events.storage_error)

        assert provider.load(ALERTS) == []
        assert storage.get_item("fleet-alerts") == "[]"
        assert len(errors) == 1

    def test_write_failure_propagates_and_keeps_content(self, tmp_path):
        """Test a failed write raises, reports the error and keeps the old records."""
        provider, storage, events = make_provider(tmp_path, quota_bytes=60)
        provider.insert(CARS, {"id": "c1"})
        errors = collect(events.storage_error)

        with pytest.raises(StorageWriteError):
            provider.insert(CARS, {"id": "c2", "notes": "x" * 100})

        assert provider.load(CARS) == [{"id": "c1"}]
        assert len(errors) == 1


# =============================================================================
# Alert <-> plan relation
# =============================================================================


class TestAlertPlanRelation:
    """Tests for link_alert / unlink_alert."""

    def setup_records(self, provider):
        provider.insert(PLANS, {"id": "p1", "carId": "c1", "status": "draft",
                                "repairOperations": []})
        provider.insert(ALERTS, {"id": "a1", "carId": "c1", "inPlan": False})

    def test_link_writes_plan_and_alert_together(self, tmp_path, monkeypatch):
        """Test linking writes the plan and the alert in one storage call."""
        provider, storage, _ = make_provider(tmp_path)
        self.setup_records(provider)
        calls = []
        original = storage.set_items
        monkeypatch.setattr(storage, "set_items",
                            lambda items: calls.append(sorted(items)) or original(items))

        plan, alert = provider.link_alert("a1", "p1", {"alertId": "a1"})

        assert calls == [["fleet-alerts", "maintenance-plans"]]
        assert plan["repairOperations"] == [{"alertId": "a1"}]
        assert alert["inPlan"] is True

    def test_link_twice_keeps_one_row(self, tmp_path):
        """Test linking the same alert twice leaves a single repair row."""
        provider, _, _ = make_provider(tmp_path)
        self.setup_records(provider)
        provider.link_alert("a1", "p1", {"alertId": "a1"})
        provider.link_alert("a1", "p1", {"alertId": "a1"})
        assert len(provider.get(PLANS, "p1")["repairOperations"]) == 1

    def test_link_missing_plan(self, tmp_path):
        """Test linking to an unknown plan raises and leaves the flag clear."""
        provider, _, _ = make_provider(tmp_path)
        self.setup_records(provider)
        with pytest.raises(NotFoundError):
            provider.link_alert("a1", "nope", {"alertId": "a1"})
        assert provider.get(ALERTS, "a1")["inPlan"] is False

    def test_unlink_leaves_completed_plans(self, tmp_path):
        """Test unlinking drops rows from open plans only."""
        provider, _, _ = make_provider(tmp_path)
        self.setup_records(provider)
        provider.insert(PLANS, {"id": "p0", "carId": "c1", "status": "completed",
                                "repairOperations": [{"alertId": "a1"}]})
        provider.link_alert("a1", "p1", {"alertId": "a1"})

        alert = provider.unlink_alert("a1")

        assert alert["inPlan"] is False
        assert provider.get(PLANS, "p1")["repairOperations"] == []
        assert provider.get(PLANS, "p0")["repairOperations"] == [{"alertId": "a1"}]

    def test_failed_link_write_changes_nothing(self, tmp_path):
        """Test a link that exceeds the quota changes neither record."""
        provider, storage, _ = make_provider(tmp_path)
        self.setup_records(provider)
        storage.quota_bytes = 200

        with pytest.raises(StorageWriteError):
            provider.link_alert("a1", "p1", {"alertId": "a1", "notes": "x" * 200})

        assert provider.get(PLANS, "p1")["repairOperations"] == []
        assert provider.get(ALERTS, "a1")["inPlan"] is False


# =============================================================================
# Starting maintenance
# =============================================================================


class TestStartMaintenance:
    """Tests for start_maintenance."""

    def test_writes_plan_and_entry_together(self, tmp_path, monkeypatch):
        """Test the plan and the entry are stored in one storage call."""
        provider, storage, _ = make_provider(tmp_path)
        provider.insert(PLANS, {"id": "p1", "carId": "c1", "status": "draft"})
        calls = []
        original = storage.set_items
        monkeypatch.setattr(storage, "set_items",
                            lambda items: calls.append(sorted(items)) or original(items))

        provider.start_maintenance(
            {"id": "p1", "carId": "c1", "status": "scheduled"},
            {"id": "m1", "carId": "c1", "planId": "p1"},
        )

        assert calls == [["in-maintenance", "maintenance-plans"]]
        assert provider.get(PLANS, "p1")["status"] == "scheduled"
        assert provider.load(MAINTENANCE) == [{"id": "m1", "carId": "c1", "planId": "p1"}]

    def test_failed_write_changes_nothing(self, tmp_path):
        """Test an entry over the quota leaves the plan a draft and no entry stored."""
        provider, storage, _ = make_provider(tmp_path)
        provider.insert(PLANS, {"id": "p1", "carId": "c1", "status": "draft"})
        storage.quota_bytes = 200

        with pytest.raises(StorageWriteError):
            provider.start_maintenance(
                {"id": "p1", "carId": "c1", "status": "scheduled"},
                {"id": "m1", "carId": "c1", "notes": "x" * 200},
            )

        assert provider.get(PLANS, "p1")["status"] == "draft"
        assert provider.load(MAINTENANCE) == []


# =============================================================================
# Legacy keys
# =============================================================================


class TestMigrateLegacyKeys:
    """Tests for migrate_legacy_keys."""

    def test_merges_old_collections(self, tmp_path):
        """Test old alert and plan keys are merged into the current ones."""
        provider, storage, _ = make_provider(tmp_path)
        provider.insert(ALERTS, {"id": "a1"})
        storage.set_item("userAlerts", json.dumps([{"id": "a1"}, {"id": "a0"}]))
        storage.set_item("maintenance_plans", json.dumps([{"id": "p9", "carId": "c1"}]))

        moved = provider.migrate_legacy_keys()

        assert moved == 2
        assert [a["id"] for a in provider.load(ALERTS)] == ["a1", "a0"]
        assert [p["id"] for p in provider.load(PLANS)] == ["p9"]
        assert storage.get_item("userAlerts") is None
        assert storage.get_item("maintenance_plans") is None

    def test_converts_drafts_and_reglament(self, tmp_path):
        """Test per-car drafts become plans and old regulation keys become guides."""
        provider, storage, _ = make_provider(tmp_path)
        storage.set_item("maintenance_plan_draft_c1", json.dumps({
            "maintenance": [{"operation": "Oil", "notes": "5W-30"}],
            "repairs": [{"alertId": "a1", "operation": "Brakes"}],
            "lastModified": "2024-07-01T00:00:00Z",
        }))
        storage.set_item("reglament_c1", json.dumps(
            [{"operation": "Oil", "mileage": "10000", "period": "6"}]
        ))

        provider.migrate_legacy_keys()

        plan = provider.get(PLANS, "draft_c1")
        assert plan["status"] == "draft"
        assert plan["periodicOperations"][0]["operation"] == "Oil"
        assert plan["repairOperations"][0]["alertId"] == "a1"
        guide = provider.load_blob(guide_key("c1"))
        assert guide["regulations"][0]["operation"] == "Oil"
        assert storage.get_item("reglament_c1") is None
        assert storage.get_item("maintenance_plan_draft_c1") is None

    def test_nothing_to_migrate(self, tmp_path):
        """Test a store without legacy keys reports nothing moved."""
        provider, _, _ = make_provider(tmp_path)
        assert provider.migrate_legacy_keys() == 0
