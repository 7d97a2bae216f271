"""Derived operational status of cars from alerts and maintenance entries."""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .alert import Alert
from .errors import FleetError
from .plan import MaintenanceEntry
from .status import AlertPriority, CarStatus

logger = logging.getLogger(__name__)


@dataclass
class CarStatusInfo:
    """Status of one car plus the counts shown next to it."""

    status: CarStatus
    alert_count: int = 0
    critical_alert_count: int = 0
    is_in_maintenance: bool = False

    @property
    def label(self) -> str:
        return self.status.label


def calculate_status(
    car_id: str, alerts: Iterable[Alert], entries: Iterable[MaintenanceEntry]
) -> CarStatusInfo:
    """
    Derive a car's status. First matching rule wins:

    1. A maintenance entry exists for the car -> maintenance
    2. An active critical alert -> problem
    3. Any other active alert -> scheduled
    4. Otherwise -> active
    """
    in_maintenance = any(e.car_id == car_id for e in entries)
    active = [a for a in alerts if a.car_id == car_id and a.is_active]
    critical = [a for a in active if a.priority == AlertPriority.CRITICAL.value]

    if in_maintenance:
        status = CarStatus.MAINTENANCE
    elif critical:
        status = CarStatus.PROBLEM
    elif active:
        status = CarStatus.SCHEDULED
    else:
        status = CarStatus.ACTIVE
    return CarStatusInfo(status, len(active), len(critical), in_maintenance)


def get_car_status_info(data, car_id: str) -> CarStatusInfo:
    """Read alerts and maintenance entries and derive one car's status."""
    try:
        alerts = data.list_alerts()
        entries = data.list_maintenance_entries()
    except FleetError as e:
        logger.warning("Could not compute status for car %s: %s", car_id, e)
        return CarStatusInfo(CarStatus.INACTIVE)
    return calculate_status(car_id, alerts, entries)


def get_multiple_car_status_info(data, car_ids: Iterable[str]) -> Dict[str, CarStatusInfo]:
    """Status of several cars from a single read of each collection."""
    car_ids = list(car_ids)
    try:
        alerts = data.list_alerts()
        entries = data.list_maintenance_entries()
    except FleetError as e:
        logger.warning("Could not compute fleet status: %s", e)
        return {car_id: CarStatusInfo(CarStatus.INACTIVE) for car_id in car_ids}
    return {car_id: calculate_status(car_id, alerts, entries) for car_id in car_ids}


def get_fleet_stats(data) -> Dict[str, int]:
    """Totals per status across the fleet, plus alert totals."""
    cars = data.list_cars()
    infos: List[CarStatusInfo] = list(
        get_multiple_car_status_info(data, [c.id for c in cars]).values()
    )
    stats = {"total": len(cars)}
    for status in CarStatus:
        stats[status.value] = sum(1 for i in infos if i.status == status)
    stats["activeAlerts"] = sum(i.alert_count for i in infos)
    stats["criticalAlerts"] = sum(i.critical_alert_count for i in infos)
    return stats
