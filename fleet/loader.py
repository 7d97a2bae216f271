"""Conversion between records and their stored camelCase dictionaries."""

from typing import Any, Dict, Optional

from .alert import Alert
from .car import Car
from .mileage import MileageReading
from .plan import MaintenanceEntry, MaintenancePlan, PeriodicOperation, RepairOperation
from .regulation import Regulation
from .service_record import ServiceOperation, ServiceRecord
from .shop import ServiceShop
from .status import AlertStatus


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    """Omit None values for cleaner stored records."""
    return {k: v for k, v in d.items() if v is not None}


def _to_int(value: Any) -> Optional[int]:
    """Stored numbers may arrive as strings from form fields."""
    if value is None or value == "":
        return None
    return int(float(value))


# =============================================================================
# Cars
# =============================================================================


def car_from_dict(dct: Dict[str, Any]) -> Car:
    return Car(
        dct["id"],
        dct.get("brand", ""),
        dct.get("model", ""),
        _to_int(dct.get("year")),
        _to_int(dct.get("mileage")) or 0,
        dct.get("vin"),
        dct.get("plateNumber"),
        dct.get("nickname"),
        dct.get("createdAt"),
        dct.get("lastService"),
        dct.get("nextService"),
    )


def car_to_dict(car: Car) -> Dict[str, Any]:
    return _drop_none({
        "id": car.id,
        "brand": car.brand,
        "model": car.model,
        "year": car.year,
        "mileage": car.mileage,
        "vin": car.vin,
        "plateNumber": car.plate_number,
        "nickname": car.nickname,
        "name": car.name,
        "createdAt": car.created_at,
        "lastService": car.last_service,
        "nextService": car.next_service,
    })


# =============================================================================
# Alerts
# =============================================================================


def alert_from_dict(dct: Dict[str, Any]) -> Alert:
    """
    Parse an alert, including the older shape written by the first
    version of the alert page (boolean 'archived', 'subsystem', 'date').
    """
    status = dct.get("status")
    if status is None:
        archived = dct.get("archived", False)
        status = AlertStatus.ARCHIVED.value if archived else AlertStatus.ACTIVE.value
    return Alert(
        dct["id"],
        dct.get("carId"),
        dct.get("type", "problem"),
        dct.get("priority", "unclear"),
        dct.get("description", ""),
        dct.get("location") or dct.get("subsystem") or "",
        _to_int(dct.get("mileage")) or 0,
        dct.get("carName"),
        status,
        bool(dct.get("inPlan", False)),
        dct.get("reportedAt") or dct.get("createdAt") or dct.get("date"),
    )


def alert_to_dict(alert: Alert) -> Dict[str, Any]:
    return _drop_none({
        "id": alert.id,
        "carId": alert.car_id,
        "carName": alert.car_name,
        "type": alert.type,
        "priority": alert.priority,
        "description": alert.description,
        "location": alert.location,
        "mileage": alert.mileage,
        "status": alert.status,
        "inPlan": alert.in_plan,
        "reportedAt": alert.reported_at,
    })


# =============================================================================
# Regulations
# =============================================================================


def regulation_from_dict(dct: Dict[str, Any]) -> Regulation:
    return Regulation(
        dct["operation"],
        _to_int(dct.get("mileage", dct.get("mileageInterval"))),
        _to_int(dct.get("period", dct.get("periodMonths"))),
        dct.get("notes"),
    )


def regulation_to_dict(regulation: Regulation) -> Dict[str, Any]:
    return _drop_none({
        "operation": regulation.operation,
        "mileage": regulation.mileage_interval,
        "period": regulation.period_months,
        "notes": regulation.notes,
    })


# =============================================================================
# Shops and service records
# =============================================================================


def shop_from_dict(dct: Dict[str, Any]) -> ServiceShop:
    return ServiceShop(
        dct["id"],
        dct.get("name", ""),
        dct.get("contacts", ""),
        _to_int(dct.get("rating")) or 5,
        dct.get("createdAt"),
    )


def shop_to_dict(shop: ServiceShop) -> Dict[str, Any]:
    return _drop_none({
        "id": shop.id,
        "name": shop.name,
        "contacts": shop.contacts,
        "rating": shop.rating,
        "createdAt": shop.created_at,
    })


def service_record_from_dict(dct: Dict[str, Any]) -> ServiceRecord:
    operations = [
        ServiceOperation(
            op.get("type", "maintenance"),
            op.get("description", ""),
            op.get("cost") or 0,
            op.get("alertId"),
        )
        for op in dct.get("operations") or []
    ]
    return ServiceRecord(
        dct["id"],
        dct.get("carId"),
        dct.get("date"),
        _to_int(dct.get("mileage")),
        dct.get("carName"),
        dct.get("serviceProvider"),
        dct.get("totalCost") or 0,
        operations,
        dct.get("notes"),
        dct.get("createdAt"),
    )


def service_record_to_dict(record: ServiceRecord) -> Dict[str, Any]:
    return _drop_none({
        "id": record.id,
        "carId": record.car_id,
        "carName": record.car_name,
        "date": record.date,
        "mileage": record.mileage,
        "serviceProvider": record.service_provider,
        "totalCost": record.total_cost,
        "operations": [
            _drop_none({
                "type": op.type,
                "description": op.description,
                "cost": op.cost,
                "alertId": op.alert_id,
            })
            for op in record.operations
        ],
        "notes": record.notes,
        "createdAt": record.created_at,
    })


def mileage_reading_from_dict(dct: Dict[str, Any]) -> MileageReading:
    return MileageReading(
        dct["id"],
        dct.get("carId"),
        dct.get("date"),
        _to_int(dct.get("mileage")) or 0,
        dct.get("type", "manual"),
        dct.get("createdAt"),
    )


def mileage_reading_to_dict(reading: MileageReading) -> Dict[str, Any]:
    return _drop_none({
        "id": reading.id,
        "carId": reading.car_id,
        "date": reading.date,
        "mileage": reading.mileage,
        "type": reading.type,
        "createdAt": reading.created_at,
    })


# =============================================================================
# Plans and maintenance entries
# =============================================================================


def periodic_operation_from_dict(dct: Dict[str, Any]) -> PeriodicOperation:
    return PeriodicOperation(
        dct["operation"],
        dct.get("priority", "low"),
        dct.get("estimatedCost") or 0,
        dct.get("notes") or "",
    )


def repair_operation_from_dict(dct: Dict[str, Any]) -> RepairOperation:
    return RepairOperation(
        dct["alertId"],
        dct.get("description") or dct.get("operation") or "",
        dct.get("priority", "unclear"),
        dct.get("estimatedCost") or 0,
        dct.get("notes") or "",
    )


def repair_operation_to_dict(op: RepairOperation) -> Dict[str, Any]:
    return {
        "alertId": op.alert_id,
        "description": op.description,
        "priority": op.priority,
        "estimatedCost": op.estimated_cost,
        "notes": op.notes,
    }


def plan_from_dict(dct: Dict[str, Any]) -> MaintenancePlan:
    return MaintenancePlan(
        id=dct["id"],
        car_id=dct.get("carId"),
        car_name=dct.get("carName") or "",
        planned_date=dct.get("plannedDate") or None,
        planned_completion_date=dct.get("plannedCompletionDate") or None,
        planned_mileage=_to_int(dct.get("plannedMileage")),
        periodic_operations=[
            periodic_operation_from_dict(op)
            for op in dct.get("periodicOperations") or []
        ],
        repair_operations=[
            repair_operation_from_dict(op)
            for op in dct.get("repairOperations") or []
        ],
        total_estimated_cost=dct.get("totalEstimatedCost") or 0,
        service_provider=dct.get("serviceProvider") or "",
        notes=dct.get("notes") or "",
        status=dct.get("status", "draft"),
        created_at=dct.get("createdAt"),
        updated_at=dct.get("updatedAt"),
    )


def plan_to_dict(plan: MaintenancePlan) -> Dict[str, Any]:
    return _drop_none({
        "id": plan.id,
        "carId": plan.car_id,
        "carName": plan.car_name,
        "plannedDate": plan.planned_date,
        "plannedCompletionDate": plan.planned_completion_date,
        "plannedMileage": plan.planned_mileage,
        "periodicOperations": [
            {
                "operation": op.operation,
                "priority": op.priority,
                "estimatedCost": op.estimated_cost,
                "notes": op.notes,
            }
            for op in plan.periodic_operations
        ],
        "repairOperations": [
            repair_operation_to_dict(op) for op in plan.repair_operations
        ],
        "totalEstimatedCost": plan.total_estimated_cost,
        "serviceProvider": plan.service_provider,
        "notes": plan.notes,
        "status": plan.status,
        "createdAt": plan.created_at,
        "updatedAt": plan.updated_at,
    })


def entry_from_dict(dct: Dict[str, Any]) -> MaintenanceEntry:
    snapshot = dct.get("maintenancePlan")
    return MaintenanceEntry(
        id=dct["id"],
        car_id=dct.get("carId"),
        car_name=dct.get("carName") or "",
        plan_id=dct.get("planId") or (snapshot or {}).get("id"),
        planned_date=dct.get("plannedDate"),
        planned_completion_date=dct.get("plannedCompletionDate"),
        planned_mileage=_to_int(dct.get("plannedMileage")),
        service_provider=dct.get("serviceProvider") or "",
        plan=plan_from_dict(snapshot) if snapshot and "carId" in snapshot else None,
        entered_at=dct.get("enteredAt") or dct.get("addedAt"),
    )


def entry_to_dict(entry: MaintenanceEntry) -> Dict[str, Any]:
    return _drop_none({
        "id": entry.id,
        "carId": entry.car_id,
        "carName": entry.car_name,
        "planId": entry.plan_id,
        "plannedDate": entry.planned_date,
        "plannedCompletionDate": entry.planned_completion_date,
        "plannedMileage": entry.planned_mileage,
        "serviceProvider": entry.service_provider,
        "maintenancePlan": plan_to_dict(entry.plan) if entry.plan else None,
        "enteredAt": entry.entered_at,
    })
