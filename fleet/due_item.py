"""DueItem dataclass for a regulation evaluated against one car."""

from dataclasses import dataclass
from typing import Optional

from .status import DuePriority


@dataclass
class DueItem:
    """Calculated scheduling fields plus the plan fields a user may edit."""

    operation: str
    mileage_interval: int
    period_months: int
    mileage_until_next: int
    months_until_next: int
    priority: DuePriority
    is_due: bool = False
    notes: Optional[str] = None
    selected: bool = False
    estimated_cost: float = 0
    plan_notes: str = ""
    mileage_since_last_service: int = 0
    months_since_service: int = 0

    @property
    def is_urgent(self) -> bool:
        return self.priority == DuePriority.HIGH


@dataclass
class RepairCandidate:
    """An active alert offered as a repair row in the plan editor."""

    alert_id: str
    description: str
    priority: str
    notes: str = ""
    selected: bool = True
    estimated_cost: float = 0
    plan_notes: str = ""
