"""Typed access to cars, alerts, plans and the other stored collections."""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from .alert import Alert
from .car import Car
from .errors import NotFoundError, ValidationError
from .events import FleetEvents
from .mileage import INITIAL, MANUAL, READING_TYPES, MileageReading
from .loader import (
    alert_from_dict,
    alert_to_dict,
    car_from_dict,
    car_to_dict,
    entry_from_dict,
    entry_to_dict,
    mileage_reading_from_dict,
    mileage_reading_to_dict,
    plan_from_dict,
    plan_to_dict,
    repair_operation_to_dict,
    service_record_from_dict,
    service_record_to_dict,
    shop_from_dict,
    shop_to_dict,
)
from .calculations import now_iso, parse_timestamp
from .plan import MaintenanceEntry, MaintenancePlan, RepairOperation
from .service_record import ServiceRecord
from .shop import ServiceShop
from .storage import (
    ALERTS,
    CARS,
    MAINTENANCE,
    MILEAGE,
    PLANS,
    SERVICE_RECORDS,
    SHOPS,
    StorageProvider,
    guide_key,
)

logger = logging.getLogger(__name__)


# Stored car fields a user may edit directly, by attribute
EDITABLE_CAR_FIELDS = {
    "vin": "vin",
    "plateNumber": "plate_number",
    "nickname": "nickname",
    "lastService": "last_service",
    "nextService": "next_service",
}


def new_id(prefix: str) -> str:
    """Generate a record id such as 'car_3f9a1c2b7d4e'."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _check_car_fields(brand, model, year, mileage) -> None:
    if not isinstance(brand, str) or not brand.strip():
        raise ValidationError("Brand is required", field="brand")
    if not isinstance(model, str) or not model.strip():
        raise ValidationError("Model is required", field="model")
    if year is None or year < 1900:
        raise ValidationError("Enter a valid model year", field="year")
    if mileage is None or mileage < 0:
        raise ValidationError("Mileage cannot be negative", field="mileage")


def _check_odometer(car: Car, mileage: int) -> None:
    if mileage < car.mileage:
        raise ValidationError(
            f"Mileage {mileage} is lower than the recorded {car.mileage}",
            field="mileage",
        )


def _check_date(value: Optional[str], field: str) -> None:
    if not value:
        return
    try:
        parse_timestamp(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid date '{value}'", field=field) from None


def int_field(data: Dict[str, Any], field: str, default: Optional[int]) -> Optional[int]:
    """A whole number from form data, or default when the field is absent."""
    if field not in data:
        return default
    try:
        return int(data[field])
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a whole number", field=field) from None


class DataService:
    """Single entry point for reading and writing fleet records."""

    def __init__(self, provider: StorageProvider, events: Optional[FleetEvents] = None):
        self.provider = provider
        self.events = events or FleetEvents()

    # =========================================================================
    # Cars
    # =========================================================================

    def list_cars(self) -> List[Car]:
        return [car_from_dict(d) for d in self.provider.load(CARS)]

    def find_car(self, car_id: str) -> Optional[Car]:
        data = self.provider.get(CARS, car_id)
        return car_from_dict(data) if data else None

    def get_car(self, car_id: str) -> Car:
        car = self.find_car(car_id)
        if car is None:
            raise NotFoundError(f"Car '{car_id}' not found")
        return car

    def save_car(
        self,
        brand: str,
        model: str,
        year: int,
        mileage: int = 0,
        vin: Optional[str] = None,
        plate_number: Optional[str] = None,
        nickname: Optional[str] = None,
        last_service: Optional[str] = None,
        car_id: Optional[str] = None,
        history: bool = True,
    ) -> Car:
        """
        Validate and store a new car.

        A car_id given by the caller is kept, as long as no car has it yet.
        With history the starting odometer becomes the first mileage reading.
        """
        _check_car_fields(brand, model, year, mileage)
        _check_date(last_service, "lastService")
        if car_id and self.find_car(car_id) is not None:
            raise ValidationError(f"Car '{car_id}' already exists", field="id")

        car = Car(
            car_id or new_id("car"),
            brand.strip(),
            model.strip(),
            year,
            mileage,
            vin,
            plate_number,
            nickname,
            created_at=now_iso(),
            last_service=last_service,
        )
        self.provider.insert(CARS, car_to_dict(car))
        logger.info("Added car %s (%s)", car.id, car.name)
        if history:
            self.record_mileage(car.id, mileage, INITIAL)
        return car

    def update_car(self, car: Car) -> Car:
        self.provider.update(CARS, car.id, car_to_dict(car))
        return car

    def edit_car(self, car_id: str, changes: Dict[str, Any], history: bool = True) -> Car:
        """
        Apply user edits to a car.

        Only the editable fields are taken from changes; id, name and
        createdAt are never overwritten. The odometer may not go backwards.
        """
        car = self.get_car(car_id)
        brand = changes.get("brand", car.brand)
        model = changes.get("model", car.model)
        year = int_field(changes, "year", car.year)
        mileage = int_field(changes, "mileage", car.mileage)
        _check_car_fields(brand, model, year, mileage)
        _check_odometer(car, mileage)
        for field in ("lastService", "nextService"):
            _check_date(changes.get(field), field)

        moved = mileage != car.mileage
        car.brand = brand.strip()
        car.model = model.strip()
        car.year = year
        car.mileage = mileage
        for field, attr in EDITABLE_CAR_FIELDS.items():
            if field in changes:
                setattr(car, attr, changes[field] or None)
        self.update_car(car)
        if moved and history:
            self.record_mileage(car_id, mileage, MANUAL)
        return car

    def update_mileage(self, car_id: str, mileage: int, history: bool = True) -> Car:
        """Record a new odometer reading. Odometers only go forward."""
        car = self.get_car(car_id)
        if mileage is None or mileage < 0:
            raise ValidationError("Mileage cannot be negative", field="mileage")
        _check_odometer(car, mileage)
        car.mileage = mileage
        self.update_car(car)
        if history:
            self.record_mileage(car_id, mileage, MANUAL)
        return car

    # =========================================================================
    # Mileage history
    # =========================================================================

    def list_mileage_history(self, car_id: Optional[str] = None) -> List[MileageReading]:
        """Readings oldest first, ordered by date and then by when they were taken."""
        readings = [mileage_reading_from_dict(d) for d in self.provider.load(MILEAGE)]
        if car_id is not None:
            readings = [r for r in readings if r.car_id == car_id]
        return sorted(readings, key=lambda r: (r.date or "", r.created_at or ""))

    def record_mileage(
        self,
        car_id: str,
        mileage: int,
        type: str = MANUAL,
        day: Optional[str] = None,
        reading_id: Optional[str] = None,
    ) -> MileageReading:
        """Append a reading to the odometer history. day defaults to today."""
        if mileage is None or mileage < 0:
            raise ValidationError("Mileage cannot be negative", field="mileage")
        if type not in READING_TYPES:
            raise ValidationError(f"Invalid reading type '{type}'", field="type")
        _check_date(day, "date")
        reading = MileageReading(
            reading_id or new_id("mileage"),
            car_id,
            day or date.today().isoformat(),
            mileage,
            type,
            created_at=now_iso(),
        )
        self.provider.insert(MILEAGE, mileage_reading_to_dict(reading))
        logger.debug("Recorded %s reading of %d km for car %s", type, mileage, car_id)
        return reading

    # =========================================================================
    # Alerts
    # =========================================================================

    def list_alerts(self) -> List[Alert]:
        return [alert_from_dict(d) for d in self.provider.load(ALERTS)]

    def find_alert(self, alert_id: str) -> Optional[Alert]:
        data = self.provider.get(ALERTS, alert_id)
        return alert_from_dict(data) if data else None

    def get_alert(self, alert_id: str) -> Alert:
        alert = self.find_alert(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert '{alert_id}' not found")
        return alert

    def insert_alert(self, alert: Alert) -> Alert:
        self.provider.insert(ALERTS, alert_to_dict(alert))
        return alert

    def save_alert(self, alert: Alert) -> Alert:
        self.provider.update(ALERTS, alert.id, alert_to_dict(alert))
        return alert

    # =========================================================================
    # Maintenance entries
    # =========================================================================

    def list_maintenance_entries(self) -> List[MaintenanceEntry]:
        return [entry_from_dict(d) for d in self.provider.load(MAINTENANCE)]

    def find_maintenance_entry(self, car_id: str) -> Optional[MaintenanceEntry]:
        for entry in self.list_maintenance_entries():
            if entry.car_id == car_id:
                return entry
        return None

    def save_maintenance_entry(self, entry: MaintenanceEntry) -> MaintenanceEntry:
        self.provider.insert(MAINTENANCE, entry_to_dict(entry))
        self.events.maintenance_status_changed.send(self, car_id=entry.car_id)
        return entry

    def start_maintenance(
        self, plan: MaintenancePlan, entry: MaintenanceEntry
    ) -> MaintenanceEntry:
        """Store the scheduled plan and the maintenance entry as one write."""
        self.provider.start_maintenance(plan_to_dict(plan), entry_to_dict(entry))
        self.events.maintenance_status_changed.send(self, car_id=entry.car_id)
        return entry

    def remove_maintenance_entry(self, car_id: str) -> int:
        removed = self.provider.delete_where(MAINTENANCE, "carId", car_id)
        if removed:
            self.events.maintenance_status_changed.send(self, car_id=car_id)
        return removed

    # =========================================================================
    # Plans
    # =========================================================================

    def list_plans(self, car_id: Optional[str] = None) -> List[MaintenancePlan]:
        plans = [plan_from_dict(d) for d in self.provider.load(PLANS)]
        if car_id is not None:
            plans = [p for p in plans if p.car_id == car_id]
        return plans

    def find_plan(self, plan_id: str) -> Optional[MaintenancePlan]:
        data = self.provider.get(PLANS, plan_id)
        return plan_from_dict(data) if data else None

    def get_plan(self, plan_id: str) -> MaintenancePlan:
        plan = self.find_plan(plan_id)
        if plan is None:
            raise NotFoundError(f"Maintenance plan '{plan_id}' not found")
        return plan

    def save_plan(self, plan: MaintenancePlan) -> MaintenancePlan:
        """Insert or replace a plan by id."""
        self.provider.upsert(PLANS, plan_to_dict(plan))
        return plan

    def delete_plan(self, plan_id: str) -> None:
        self.provider.delete(PLANS, plan_id)

    def link_alert(
        self, alert_id: str, plan_id: str, repair: RepairOperation
    ) -> Tuple[MaintenancePlan, Alert]:
        """Put an alert's repair row into a plan and flag the alert in one write."""
        plan, alert = self.provider.link_alert(
            alert_id, plan_id, repair_operation_to_dict(repair)
        )
        return plan_from_dict(plan), alert_from_dict(alert)

    def unlink_alert(self, alert_id: str) -> Alert:
        """Take an alert out of every open plan and clear its flag in one write."""
        return alert_from_dict(self.provider.unlink_alert(alert_id))

    # =========================================================================
    # Shops and service records
    # =========================================================================

    def list_shops(self) -> List[ServiceShop]:
        return [shop_from_dict(d) for d in self.provider.load(SHOPS)]

    def save_shop(self, shop: ServiceShop) -> ServiceShop:
        self.provider.upsert(SHOPS, shop_to_dict(shop))
        return shop

    def delete_shop(self, shop_id: str) -> None:
        self.provider.delete(SHOPS, shop_id)

    def list_service_records(self, car_id: Optional[str] = None) -> List[ServiceRecord]:
        records = [service_record_from_dict(d) for d in self.provider.load(SERVICE_RECORDS)]
        if car_id is not None:
            records = [r for r in records if r.car_id == car_id]
        return records

    def save_service_record(self, record: ServiceRecord) -> ServiceRecord:
        self.provider.insert(SERVICE_RECORDS, service_record_to_dict(record))
        return record

    # =========================================================================
    # Per-car regulation guides
    # =========================================================================

    def load_guide(self, car_id: str) -> Optional[Dict[str, Any]]:
        guide = self.provider.load_blob(guide_key(car_id))
        return guide if isinstance(guide, dict) else None

    def save_guide(self, car_id: str, guide: Dict[str, Any]) -> None:
        self.provider.save_blob(guide_key(car_id), guide)

    def remove_guide(self, car_id: str) -> None:
        self.provider.remove_blob(guide_key(car_id))
