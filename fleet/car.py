"""Car class for vehicle identification and odometer state."""

from typing import Optional


class Car:
    """A fleet vehicle."""

    def __init__(
        self,
        id: str,
        brand: str,
        model: str,
        year: int,
        mileage: int = 0,
        vin: Optional[str] = None,
        plate_number: Optional[str] = None,
        nickname: Optional[str] = None,
        created_at: Optional[str] = None,
        last_service: Optional[str] = None,
        next_service: Optional[str] = None,
    ):
        self.id = id
        self.brand = brand
        self.model = model
        self.year = year
        self.mileage = mileage
        self.vin = vin
        self.plate_number = plate_number
        self.nickname = nickname
        self.created_at = created_at
        self.last_service = last_service
        self.next_service = next_service

    @property
    def name(self) -> str:
        """Human-readable vehicle name."""
        if self.nickname:
            return self.nickname
        return f"{self.year} {self.brand} {self.model}"
