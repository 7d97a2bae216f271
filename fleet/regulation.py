"""Regulation class for periodic maintenance interval definitions."""

from typing import Optional

from .errors import ValidationError


class Regulation:
    """A catalog entry saying how often an operation should recur."""

    def __init__(
        self,
        operation: str,
        mileage_interval: int,
        period_months: int,
        notes: Optional[str] = None,
    ):
        self.operation = operation
        self.mileage_interval = mileage_interval
        self.period_months = period_months
        self.notes = notes

    def __eq__(self, other):
        if not isinstance(other, Regulation):
            return NotImplemented
        return (
            self.operation == other.operation
            and self.mileage_interval == other.mileage_interval
            and self.period_months == other.period_months
            and self.notes == other.notes
        )

    def __repr__(self):
        return (
            f"Regulation({self.operation!r}, {self.mileage_interval}, "
            f"{self.period_months})"
        )


def validate_regulation(regulation: Regulation) -> None:
    """
    Reject a regulation the due engine cannot evaluate.

    Both intervals are used as modulo divisors, so zero or negative
    values are refused here at the data-entry boundary.
    """
    if not regulation.operation or not regulation.operation.strip():
        raise ValidationError("Operation name is required", field="operation")
    if regulation.mileage_interval is None or regulation.mileage_interval <= 0:
        raise ValidationError(
            f"Mileage interval for '{regulation.operation}' must be greater than 0",
            field="mileage",
        )
    if regulation.period_months is None or regulation.period_months <= 0:
        raise ValidationError(
            f"Period for '{regulation.operation}' must be greater than 0 months",
            field="period",
        )
