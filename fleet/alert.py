"""Alert class for user-reported problems and recommendations."""

from typing import Optional

from .status import AlertStatus


class Alert:
    """A problem or recommendation reported for a car."""

    def __init__(
        self,
        id: str,
        car_id: str,
        type: str,
        priority: str,
        description: str,
        location: str,
        mileage: int,
        car_name: Optional[str] = None,
        status: str = AlertStatus.ACTIVE.value,
        in_plan: bool = False,
        reported_at: Optional[str] = None,
    ):
        self.id = id
        self.car_id = car_id
        self.car_name = car_name
        self.type = type
        self.priority = priority
        self.description = description
        self.location = location
        self.mileage = mileage
        self.status = status
        self.in_plan = in_plan
        self.reported_at = reported_at

    @property
    def is_active(self) -> bool:
        return self.status == AlertStatus.ACTIVE.value

    @property
    def is_archived(self) -> bool:
        return self.status == AlertStatus.ARCHIVED.value
