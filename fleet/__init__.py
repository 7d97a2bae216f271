"""
Fleet maintenance tracking.

This package provides the domain of a small fleet tracker:
- Car, Alert, MaintenancePlan, MaintenanceEntry, ServiceShop, ServiceRecord,
  MileageReading
- Status calculator: derived car status from alerts and maintenance
- Due engine: regulation intervals evaluated against a car
- AlertManager: alert lifecycle and plan membership
- PlanBuilder / PlanEditor: plans, drafts and sending cars to service
- Storage providers: local store file or REST backend
"""

from .status import AlertPriority, AlertStatus, AlertType, CarStatus, DuePriority, PlanStatus
from .errors import (
    BackendError,
    FleetError,
    NotFoundError,
    StorageReadError,
    StorageWriteError,
    ValidationError,
)
from .car import Car
from .mileage import MileageReading
from .alert import Alert
from .regulation import Regulation, validate_regulation
from .plan import MaintenanceEntry, MaintenancePlan, PeriodicOperation, RepairOperation
from .shop import ServiceShop
from .service_record import ServiceOperation, ServiceRecord
from .due_item import DueItem, RepairCandidate
from .events import FleetEvents
from .storage import LocalProvider, LocalStorage, StorageProvider
from .remote import RemoteProvider
from .config import AppConfig, create_provider, load_config, should_use_backend
from .data_service import DataService
from .car_status import CarStatusInfo, get_car_status_info, get_fleet_stats
from .due import calculate_due_items
from .alerts import AlertManager
from .planner import PlanBuilder, PlanEditor, total_cost
from .shops import ShopManager
from .services import Fleet, open_fleet

__all__ = [
    "AlertPriority",
    "AlertStatus",
    "AlertType",
    "CarStatus",
    "DuePriority",
    "PlanStatus",
    "BackendError",
    "FleetError",
    "NotFoundError",
    "StorageReadError",
    "StorageWriteError",
    "ValidationError",
    "Car",
    "MileageReading",
    "Alert",
    "Regulation",
    "validate_regulation",
    "MaintenanceEntry",
    "MaintenancePlan",
    "PeriodicOperation",
    "RepairOperation",
    "ServiceShop",
    "ServiceOperation",
    "ServiceRecord",
    "DueItem",
    "RepairCandidate",
    "FleetEvents",
    "LocalProvider",
    "LocalStorage",
    "StorageProvider",
    "RemoteProvider",
    "AppConfig",
    "create_provider",
    "load_config",
    "should_use_backend",
    "DataService",
    "CarStatusInfo",
    "get_car_status_info",
    "get_fleet_stats",
    "calculate_due_items",
    "AlertManager",
    "PlanBuilder",
    "PlanEditor",
    "total_cost",
    "ShopManager",
    "Fleet",
    "open_fleet",
]
