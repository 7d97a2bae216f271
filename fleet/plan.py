"""Maintenance plan and maintenance entry dataclasses."""

from dataclasses import dataclass, field
from typing import List, Optional

from .status import PlanStatus


@dataclass
class PeriodicOperation:
    """A regulation operation selected into a plan."""

    operation: str
    priority: str
    estimated_cost: float = 0
    notes: str = ""


@dataclass
class RepairOperation:
    """An alert-driven repair selected into a plan."""

    alert_id: str
    description: str
    priority: str
    estimated_cost: float = 0
    notes: str = ""


@dataclass
class MaintenancePlan:
    """A bundle of periodic and repair operations for one service visit."""

    id: str
    car_id: str
    car_name: str = ""
    planned_date: Optional[str] = None
    planned_completion_date: Optional[str] = None
    planned_mileage: Optional[int] = None
    periodic_operations: List[PeriodicOperation] = field(default_factory=list)
    repair_operations: List[RepairOperation] = field(default_factory=list)
    total_estimated_cost: float = 0
    service_provider: str = ""
    notes: str = ""
    status: str = PlanStatus.DRAFT.value
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def operation_count(self) -> int:
        return len(self.periodic_operations) + len(self.repair_operations)

    @property
    def is_draft(self) -> bool:
        return self.status == PlanStatus.DRAFT.value

    def has_alert(self, alert_id: str) -> bool:
        return any(r.alert_id == alert_id for r in self.repair_operations)


@dataclass
class MaintenanceEntry:
    """Marks a car as currently in service. One per car at most."""

    id: str
    car_id: str
    car_name: str = ""
    plan_id: Optional[str] = None
    planned_date: Optional[str] = None
    planned_completion_date: Optional[str] = None
    planned_mileage: Optional[int] = None
    service_provider: str = ""
    plan: Optional[MaintenancePlan] = None
    entered_at: Optional[str] = None
