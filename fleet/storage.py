"""Local persistence: a localStorage-like string map and the provider over it."""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from .errors import NotFoundError, StorageReadError, StorageWriteError
from .events import FleetEvents

logger = logging.getLogger(__name__)

CARS = "cars"
ALERTS = "alerts"
MAINTENANCE = "maintenance"
PLANS = "plans"
SHOPS = "shops"
SERVICE_RECORDS = "service_records"
MILEAGE = "mileage"

# Storage key holding each collection as a JSON-encoded array
COLLECTION_KEYS = {
    CARS: "cars",
    ALERTS: "fleet-alerts",
    MAINTENANCE: "in-maintenance",
    PLANS: "maintenance-plans",
    SHOPS: "service-shops",
    SERVICE_RECORDS: "serviceRecords",
    MILEAGE: "mileageData",
}

LEGACY_ALERTS_KEY = "userAlerts"
LEGACY_PLANS_KEY = "maintenance_plans"
LEGACY_REGLAMENT_PREFIX = "reglament_"
GUIDE_PREFIX = "car-maintenance-guide-"
DRAFT_PREFIX = "maintenance_plan_draft_"


def guide_key(car_id: str) -> str:
    return f"{GUIDE_PREFIX}{car_id}"


class LocalStorage:
    """
    String key/value store with browser localStorage semantics.

    Backed by a YAML file when a path is given, memory only otherwise.
    Every write rewrites the whole file through a temp file, so a batch
    passed to set_items lands completely or not at all. Writes are
    serialized on `lock`, which callers also hold around a read-modify-write.
    """

    def __init__(
        self, path: Union[str, Path, None] = None, quota_bytes: Optional[int] = None
    ):
        self.path = Path(path) if path else None
        self.quota_bytes = quota_bytes
        self.lock = threading.RLock()
        self._items = self._read_file()

    def _read_file(self) -> Dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as fp:
                data = yaml.load(fp, Loader=yaml.SafeLoader)
        except yaml.YAMLError as e:
            raise StorageReadError(str(self.path), str(e)) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise StorageReadError(str(self.path), "expected a mapping of keys")
        return {str(k): str(v) for k, v in data.items()}

    def _write_file(self, items: Dict[str, str]) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as fp:
                yaml.dump(
                    items,
                    fp,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                    width=120,
                )
            os.replace(tmp_name, self.path)
        except OSError as e:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise StorageWriteError(f"Could not write {self.path}: {e}") from e

    def _size(self, items: Dict[str, str]) -> int:
        return sum(len(k) + len(v) for k, v in items.items())

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.set_items({key: value})

    def remove_item(self, key: str) -> None:
        self.set_items({key: None})

    def set_items(self, items: Dict[str, Optional[str]]) -> None:
        """Apply several writes at once. A None value removes the key."""
        with self.lock:
            updated = dict(self._items)
            for key, value in items.items():
                if value is None:
                    updated.pop(key, None)
                else:
                    updated[key] = value
            if self.quota_bytes is not None and self._size(updated) > self.quota_bytes:
                raise StorageWriteError(
                    f"Storage quota exceeded ({self._size(updated)} > {self.quota_bytes})"
                )
            self._write_file(updated)
            self._items = updated

    def keys(self) -> List[str]:
        return list(self._items.keys())

    def clear(self) -> None:
        with self.lock:
            self._write_file({})
            self._items = {}


class StorageProvider(ABC):
    """Collection-level persistence used by the data service."""

    @abstractmethod
    def load(self, collection: str) -> List[Dict[str, Any]]:
        """Get every record of a collection."""

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get one record by id, None when absent."""

    @abstractmethod
    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Append a new record."""

    @abstractmethod
    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Merge changes into an existing record."""

    @abstractmethod
    def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Replace the record with the same id, or append it."""

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> None:
        """Remove a record by id."""

    @abstractmethod
    def delete_where(self, collection: str, field: str, value: Any) -> int:
        """Remove every record whose field equals value. Returns the count."""

    @abstractmethod
    def load_blob(self, key: str) -> Optional[Any]:
        """Get a per-car override object."""

    @abstractmethod
    def save_blob(self, key: str, value: Any) -> None:
        """Store a per-car override object."""

    @abstractmethod
    def remove_blob(self, key: str) -> None:
        """Delete a per-car override object."""

    @abstractmethod
    def link_alert(
        self, alert_id: str, plan_id: str, repair_row: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """Add a repair row to a plan and flag the alert, as one write."""

    @abstractmethod
    def unlink_alert(self, alert_id: str) -> Dict[str, Any]:
        """Drop the alert's rows from open plans and clear its flag, as one write."""

    @abstractmethod
    def start_maintenance(
        self, plan: Dict[str, Any], entry: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Store a scheduled plan and the car's maintenance entry together."""


class LocalProvider(StorageProvider):
    """Provider keeping each collection as a JSON array in LocalStorage."""

    def __init__(self, storage: LocalStorage, events: Optional[FleetEvents] = None):
        self.storage = storage
        self.events = events or FleetEvents()

    # -------------------------------------------------------------------------
    # Raw key access
    # -------------------------------------------------------------------------

    def _decode(self, key: str, expect_list: bool) -> Any:
        raw = self.storage.get_item(key)
        if raw is None:
            return [] if expect_list else None
        try:
            value = json.loads(raw)
            if expect_list and not isinstance(value, list):
                raise ValueError(f"expected an array, got {type(value).__name__}")
            if expect_list and not all(isinstance(item, dict) for item in value):
                raise ValueError("expected an array of objects")
            return value
        except ValueError as e:
            error = StorageReadError(key, str(e))
            logger.error("Error reading storage key %r: %s", key, e)
            self.events.storage_error.send(self, key=key, error=error)
            self._reset_key(key, "[]" if expect_list else None)
            return [] if expect_list else None

    def _reset_key(self, key: str, value: Optional[str]) -> None:
        try:
            self.storage.set_items({key: value})
        except StorageWriteError as e:
            logger.error("Could not reset corrupt key %r: %s", key, e)

    def _write(self, updates: Dict[str, Any]) -> None:
        """Encode and write several keys in one storage call."""
        encoded = {
            key: None if value is None else json.dumps(value, ensure_ascii=False)
            for key, value in updates.items()
        }
        try:
            self.storage.set_items(encoded)
        except StorageWriteError as e:
            logger.error("Error writing storage keys %s: %s", sorted(updates), e)
            self.events.storage_error.send(self, key=",".join(sorted(updates)), error=e)
            raise

    def _key(self, collection: str) -> str:
        try:
            return COLLECTION_KEYS[collection]
        except KeyError:
            raise ValueError(f"Unknown collection '{collection}'") from None

    def _save_collection(self, collection: str, records: List[Dict[str, Any]]) -> None:
        self._write({self._key(collection): records})
        self.events.data_changed.send(self, collection=collection)

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    def load(self, collection: str) -> List[Dict[str, Any]]:
        return self._decode(self._key(collection), expect_list=True)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self.load(collection):
            if record.get("id") == record_id:
                return record
        return None

    def insert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        with self.storage.lock:
            records = self.load(collection)
            records.append(record)
            self._save_collection(collection, records)
        return record

    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        with self.storage.lock:
            records = self.load(collection)
            for index, record in enumerate(records):
                if record.get("id") == record_id:
                    records[index] = {**record, **changes}
                    self._save_collection(collection, records)
                    return records[index]
        raise NotFoundError(f"No record '{record_id}' in {collection}")

    def upsert(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        with self.storage.lock:
            records = self.load(collection)
            _replace_or_append(records, record)
            self._save_collection(collection, records)
        return record

    def delete(self, collection: str, record_id: str) -> None:
        with self.storage.lock:
            records = self.load(collection)
            remaining = [r for r in records if r.get("id") != record_id]
            if len(remaining) == len(records):
                raise NotFoundError(f"No record '{record_id}' in {collection}")
            self._save_collection(collection, remaining)

    def delete_where(self, collection: str, field: str, value: Any) -> int:
        with self.storage.lock:
            records = self.load(collection)
            remaining = [r for r in records if r.get(field) != value]
            removed = len(records) - len(remaining)
            if removed:
                self._save_collection(collection, remaining)
        return removed

    # -------------------------------------------------------------------------
    # Per-car blobs
    # -------------------------------------------------------------------------

    def load_blob(self, key: str) -> Optional[Any]:
        return self._decode(key, expect_list=False)

    def save_blob(self, key: str, value: Any) -> None:
        self._write({key: value})

    def remove_blob(self, key: str) -> None:
        self._write({key: None})

    # -------------------------------------------------------------------------
    # Alert <-> plan relation
    # -------------------------------------------------------------------------

    def link_alert(
        self, alert_id: str, plan_id: str, repair_row: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        with self.storage.lock:
            plans = self.load(PLANS)
            alerts = self.load(ALERTS)
            plan = next((p for p in plans if p.get("id") == plan_id), None)
            alert = next((a for a in alerts if a.get("id") == alert_id), None)
            if plan is None:
                raise NotFoundError(f"Maintenance plan '{plan_id}' not found")
            if alert is None:
                raise NotFoundError(f"Alert '{alert_id}' not found")

            rows = plan.setdefault("repairOperations", [])
            if not any(row.get("alertId") == alert_id for row in rows):
                rows.append(repair_row)
            alert["inPlan"] = True

            self._write({COLLECTION_KEYS[PLANS]: plans, COLLECTION_KEYS[ALERTS]: alerts})
        self.events.data_changed.send(self, collection=PLANS)
        self.events.data_changed.send(self, collection=ALERTS)
        return plan, alert

    def unlink_alert(self, alert_id: str) -> Dict[str, Any]:
        with self.storage.lock:
            plans = self.load(PLANS)
            alerts = self.load(ALERTS)
            alert = next((a for a in alerts if a.get("id") == alert_id), None)
            if alert is None:
                raise NotFoundError(f"Alert '{alert_id}' not found")

            for plan in plans:
                if plan.get("status") == "completed":
                    continue
                rows = plan.get("repairOperations") or []
                plan["repairOperations"] = [r for r in rows if r.get("alertId") != alert_id]
            alert["inPlan"] = False

            self._write({COLLECTION_KEYS[PLANS]: plans, COLLECTION_KEYS[ALERTS]: alerts})
        self.events.data_changed.send(self, collection=PLANS)
        self.events.data_changed.send(self, collection=ALERTS)
        return alert

    def start_maintenance(
        self, plan: Dict[str, Any], entry: Dict[str, Any]
    ) -> Dict[str, Any]:
        with self.storage.lock:
            plans = self.load(PLANS)
            entries = self.load(MAINTENANCE)
            _replace_or_append(plans, plan)
            entries.append(entry)
            self._write({
                COLLECTION_KEYS[PLANS]: plans,
                COLLECTION_KEYS[MAINTENANCE]: entries,
            })
        self.events.data_changed.send(self, collection=PLANS)
        self.events.data_changed.send(self, collection=MAINTENANCE)
        return entry

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def migrate_legacy_keys(self) -> int:
        """
        Fold data written under older key names into the current keys.

        - userAlerts -> fleet-alerts
        - maintenance_plans -> maintenance-plans
        - maintenance_plan_draft_<carId> -> a draft in maintenance-plans
        - reglament_<carId> -> car-maintenance-guide-<carId>

        Returns the number of records moved.
        """
        updates: Dict[str, Any] = {}
        merged: Dict[str, List[Dict[str, Any]]] = {}
        moved = 0

        for legacy_key, collection in (
            (LEGACY_ALERTS_KEY, ALERTS),
            (LEGACY_PLANS_KEY, PLANS),
        ):
            if self.storage.get_item(legacy_key) is None:
                continue
            current = merged.setdefault(collection, self.load(collection))
            known = {r.get("id") for r in current}
            for record in self._decode(legacy_key, expect_list=True):
                if record.get("id") not in known:
                    current.append(record)
                    moved += 1
            updates[legacy_key] = None

        for key in self.storage.keys():
            if key.startswith(DRAFT_PREFIX):
                car_id = key[len(DRAFT_PREFIX):]
                plan = _plan_from_legacy_draft(car_id, self._decode(key, False))
                plans = merged.setdefault(PLANS, self.load(PLANS))
                if plan and plan["id"] not in {p.get("id") for p in plans}:
                    plans.append(plan)
                    moved += 1
                updates[key] = None
            elif key.startswith(LEGACY_REGLAMENT_PREFIX):
                car_id = key[len(LEGACY_REGLAMENT_PREFIX):]
                regulations = self._decode(key, expect_list=False)
                if isinstance(regulations, dict):
                    regulations = regulations.get("regulations")
                if regulations and self.storage.get_item(guide_key(car_id)) is None:
                    updates[guide_key(car_id)] = {
                        "carId": car_id,
                        "regulations": regulations,
                        "isDefault": False,
                    }
                    moved += len(regulations)
                updates[key] = None

        for collection, records in merged.items():
            updates[COLLECTION_KEYS[collection]] = records
        if updates:
            self._write(updates)
            logger.info("Migrated %d legacy records", moved)
        return moved


def _replace_or_append(records: List[Dict[str, Any]], record: Dict[str, Any]) -> None:
    for index, existing in enumerate(records):
        if existing.get("id") == record["id"]:
            records[index] = record
            return
    records.append(record)


def _plan_from_legacy_draft(car_id: str, draft: Any) -> Optional[Dict[str, Any]]:
    """Convert a per-car editor draft ({maintenance: [], repairs: []}) to a plan."""
    if not isinstance(draft, dict):
        return None
    maintenance = draft.get("maintenance") or []
    repairs = [r for r in draft.get("repairs") or [] if r.get("alertId")]
    if not maintenance and not repairs:
        return None
    return {
        "id": f"draft_{car_id}",
        "carId": car_id,
        "status": "draft",
        "periodicOperations": [
            {
                "operation": m.get("operation", ""),
                "priority": "low",
                "estimatedCost": 0,
                "notes": m.get("notes") or "",
            }
            for m in maintenance
        ],
        "repairOperations": [
            {
                "alertId": r["alertId"],
                "description": r.get("operation") or "",
                "priority": "unclear",
                "estimatedCost": 0,
                "notes": r.get("notes") or "",
            }
            for r in repairs
        ],
        "totalEstimatedCost": 0,
        "createdAt": draft.get("lastModified"),
        "updatedAt": draft.get("lastModified"),
    }
