"""Maintenance due engine and per-car regulation sources."""

import logging
from datetime import date, datetime
from typing import List, Optional, Union

from .calculations import (
    assign_priority,
    calc_mileage_since_service,
    calc_mileage_until_next,
    calc_months_since,
    calc_months_until_next,
    check_is_due,
    now_iso,
    parse_timestamp,
    utc_now,
)
from .car import Car
from .catalog import default_regulations
from .due_item import DueItem
from .errors import ValidationError
from .loader import regulation_from_dict, regulation_to_dict
from .regulation import Regulation, validate_regulation
from .service_record import ServiceRecord
from .status import DuePriority

logger = logging.getLogger(__name__)


def _last_service_anchor(
    car_id: str, operation: str, service_records: List[ServiceRecord]
) -> Optional[int]:
    """Odometer reading at the most recent recorded visit that did this operation."""
    readings = [
        r.mileage
        for r in service_records
        if r.car_id == car_id and r.mileage is not None and r.covers(operation)
    ]
    return max(readings) if readings else None


def calculate_due_items(
    car: Car,
    regulations: List[Regulation],
    as_of: Union[str, date, datetime, None] = None,
    service_records: Optional[List[ServiceRecord]] = None,
) -> List[DueItem]:
    """
    Evaluate each regulation against the car's odometer and service date.

    Regulations must already have passed validate_regulation; zero
    intervals are rejected when they are entered, not here.

    Without service records the mileage counter is the odometer modulo the
    interval. When a record shows the operation was actually done, the
    counter starts from that visit's odometer reading instead.

    Items come back in regulation order. Only high-priority items are
    pre-selected for a plan.
    """
    try:
        as_of = parse_timestamp(as_of) or utc_now()
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid date '{as_of}'", field="asOf") from None
    last_service = parse_timestamp(car.last_service) or parse_timestamp(car.created_at)
    months_since = calc_months_since(last_service, as_of)
    service_records = service_records or []

    items = []
    for regulation in regulations:
        anchor = _last_service_anchor(car.id, regulation.operation, service_records)
        miles_since = calc_mileage_since_service(
            car.mileage, regulation.mileage_interval, anchor
        )
        miles_left = calc_mileage_until_next(
            car.mileage, regulation.mileage_interval, anchor
        )
        months_left = calc_months_until_next(months_since, regulation.period_months)
        priority = assign_priority(miles_left, months_left)
        items.append(
            DueItem(
                operation=regulation.operation,
                mileage_interval=regulation.mileage_interval,
                period_months=regulation.period_months,
                mileage_until_next=miles_left,
                months_until_next=months_left,
                priority=priority,
                is_due=check_is_due(priority, miles_left, months_left),
                notes=regulation.notes,
                selected=priority == DuePriority.HIGH,
                mileage_since_last_service=miles_since,
                months_since_service=months_since,
            )
        )
    return items


# =============================================================================
# Regulation sources
# =============================================================================


def get_car_regulations(data, car_id: str) -> List[Regulation]:
    """The car's customized guide if one is saved, else its manufacturer defaults."""
    car = data.get_car(car_id)
    guide = data.load_guide(car_id)
    if guide and guide.get("regulations"):
        regulations = []
        for dct in guide["regulations"]:
            try:
                regulation = regulation_from_dict(dct)
                validate_regulation(regulation)
            except (KeyError, TypeError, ValueError, ValidationError) as e:
                logger.warning("Skipping bad regulation for car %s: %s", car_id, e)
                continue
            regulations.append(regulation)
        return regulations
    return default_regulations(car.brand)


def save_car_guide(data, car_id: str, regulations: List[Regulation]) -> None:
    """Store a customized regulation set for one car. Every entry is validated first."""
    car = data.get_car(car_id)
    for regulation in regulations:
        validate_regulation(regulation)
    now = now_iso()
    existing = data.load_guide(car_id) or {}
    data.save_guide(
        car_id,
        {
            "carId": car_id,
            "brand": car.brand,
            "model": car.model,
            "year": car.year,
            "regulations": [regulation_to_dict(r) for r in regulations],
            "isDefault": False,
            "createdAt": existing.get("createdAt", now),
            "updatedAt": now,
        },
    )
    logger.info("Saved %d regulations for car %s", len(regulations), car_id)


def reset_to_default(data, car_id: str) -> List[Regulation]:
    """Replace the car's guide with its manufacturer defaults."""
    car = data.get_car(car_id)
    regulations = default_regulations(car.brand)
    save_car_guide(data, car_id, regulations)
    return regulations


def calculate_car_due(data, car_id: str, as_of=None) -> List[DueItem]:
    """Due items for a stored car, using its regulations and service history."""
    car = data.get_car(car_id)
    return calculate_due_items(
        car,
        get_car_regulations(data, car_id),
        as_of=as_of,
        service_records=data.list_service_records(car_id),
    )
