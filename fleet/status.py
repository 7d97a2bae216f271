"""Enums for car status, alert and plan states."""

from enum import Enum


class CarStatus(Enum):
    """Derived operational status of a car."""

    ACTIVE = "active"
    MAINTENANCE = "maintenance"
    PROBLEM = "problem"
    SCHEDULED = "scheduled"  # Has non-critical alerts, still operable
    INACTIVE = "inactive"  # Status could not be computed

    @property
    def label(self) -> str:
        return STATUS_LABELS[self]


STATUS_LABELS = {
    CarStatus.ACTIVE: "Ready",
    CarStatus.MAINTENANCE: "In maintenance",
    CarStatus.PROBLEM: "Needs attention",
    CarStatus.SCHEDULED: "Service planned",
    CarStatus.INACTIVE: "Inactive",
}


class AlertType(Enum):
    PROBLEM = "problem"
    RECOMMENDATION = "recommendation"


class AlertPriority(Enum):
    """Alert priority. Lower rank = more urgent."""

    CRITICAL = "critical"
    UNCLEAR = "unclear"
    CAN_WAIT = "can-wait"

    @property
    def rank(self) -> int:
        return _ALERT_RANK[self]

    @property
    def label(self) -> str:
        return _ALERT_LABELS[self]


_ALERT_RANK = {
    AlertPriority.CRITICAL: 0,
    AlertPriority.UNCLEAR: 1,
    AlertPriority.CAN_WAIT: 2,
}

_ALERT_LABELS = {
    AlertPriority.CRITICAL: "Critical",
    AlertPriority.UNCLEAR: "Unclear",
    AlertPriority.CAN_WAIT: "Can wait",
}


class AlertStatus(Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class DuePriority(Enum):
    """Urgency of a periodic maintenance operation."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PlanStatus(Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
