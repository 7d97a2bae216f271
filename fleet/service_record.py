"""ServiceRecord class for completed maintenance visits."""

from typing import List, Optional


class ServiceOperation:
    """One line of work performed during a visit."""

    def __init__(
        self,
        type: str,
        description: str,
        cost: float = 0,
        alert_id: Optional[str] = None,
    ):
        self.type = type  # "maintenance" or "repair"
        self.description = description
        self.cost = cost
        self.alert_id = alert_id


class ServiceRecord:
    """A record of maintenance performed on a car."""

    def __init__(
        self,
        id: str,
        car_id: str,
        date: str,
        mileage: Optional[int] = None,
        car_name: Optional[str] = None,
        service_provider: Optional[str] = None,
        total_cost: float = 0,
        operations: Optional[List[ServiceOperation]] = None,
        notes: Optional[str] = None,
        created_at: Optional[str] = None,
    ):
        self.id = id
        self.car_id = car_id
        self.car_name = car_name
        self.date = date
        self.mileage = mileage
        self.service_provider = service_provider
        self.total_cost = total_cost
        self.operations = operations or []
        self.notes = notes
        self.created_at = created_at

    def covers(self, operation: str) -> bool:
        """Check whether this visit included the named periodic operation."""
        return any(
            op.type == "maintenance" and op.description == operation
            for op in self.operations
        )
