"""Helper functions for maintenance due calculations."""

from datetime import date, datetime, timezone
from typing import Iterable, Optional, Union

from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta

from .status import DuePriority

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
SECONDS_PER_MONTH = 30 * 24 * 60 * 60

HIGH_MILEAGE_THRESHOLD = 2000
HIGH_MONTHS_THRESHOLD = 1
MEDIUM_MILEAGE_THRESHOLD = 5000
MEDIUM_MONTHS_THRESHOLD = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current time as an ISO 8601 string, the format every timestamp is stored in."""
    return utc_now().isoformat()


def parse_timestamp(value: Union[str, date, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored date or timestamp into an aware datetime.

    Accepts plain dates ('2024-07-15') and browser-style timestamps
    ('2024-07-15T10:00:00.000Z'). Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calc_months_since(last: Optional[datetime], as_of: datetime) -> int:
    """
    Whole 30-day months elapsed since the last service.

    A missing reference date counts from the Unix epoch, which makes the
    item look overdue rather than hiding it.
    """
    start = last or EPOCH
    elapsed = (as_of - start).total_seconds()
    return int(elapsed // SECONDS_PER_MONTH)


def calc_mileage_since_service(
    current_mileage: int, interval: int, anchor_mileage: Optional[int] = None
) -> int:
    """
    Kilometres driven since the operation was last done.

    - With an anchor (odometer at the last actual service): current - anchor
    - Without: current mod interval, as if every service happened exactly
      on a multiple of the interval
    """
    if anchor_mileage is not None:
        return current_mileage - anchor_mileage
    return current_mileage % interval


def calc_mileage_until_next(
    current_mileage: int, interval: int, anchor_mileage: Optional[int] = None
) -> int:
    """Kilometres left before the operation is due again, negative when overdue."""
    return interval - calc_mileage_since_service(current_mileage, interval, anchor_mileage)


def calc_months_until_next(months_since: int, period_months: int) -> int:
    """Months left in the current service period."""
    return period_months - (months_since % period_months)


def assign_priority(mileage_until_next: int, months_until_next: int) -> DuePriority:
    """Map remaining distance and time to an urgency level."""
    if (
        mileage_until_next <= HIGH_MILEAGE_THRESHOLD
        or months_until_next <= HIGH_MONTHS_THRESHOLD
    ):
        return DuePriority.HIGH
    if (
        mileage_until_next <= MEDIUM_MILEAGE_THRESHOLD
        or months_until_next <= MEDIUM_MONTHS_THRESHOLD
    ):
        return DuePriority.MEDIUM
    return DuePriority.LOW


def check_is_due(
    priority: DuePriority, mileage_until_next: int, months_until_next: int
) -> bool:
    """A high-priority item whose distance or time has run out."""
    if priority != DuePriority.HIGH:
        return False
    return mileage_until_next <= 0 or months_until_next <= 0


def calc_next_service_date(
    last_service: Optional[datetime], periods: Iterable[int]
) -> Optional[date]:
    """Earliest date one of the given periods comes around again."""
    periods = [p for p in periods if p]
    if last_service is None or not periods:
        return None
    return (last_service + relativedelta(months=min(periods))).date()
