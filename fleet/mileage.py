"""MileageReading class for the odometer history of a car."""

from typing import Optional

# Where a reading came from
INITIAL = "initial"
MANUAL = "manual"
SERVICE = "service"
READING_TYPES = (INITIAL, MANUAL, SERVICE)


class MileageReading:
    """One odometer reading of a car on a given day."""

    def __init__(
        self,
        id: str,
        car_id: str,
        date: str,
        mileage: int,
        type: str = MANUAL,
        created_at: Optional[str] = None,
    ):
        self.id = id
        self.car_id = car_id
        self.date = date
        self.mileage = mileage
        self.type = type
        self.created_at = created_at
