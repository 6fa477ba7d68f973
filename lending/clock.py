"""Date arithmetic for loans: due dates and elapsed overdue days."""

from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from lending.config import LOAN_DAYS

ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Default clock for the engine and the calculators."""
    return datetime.now(timezone.utc)


def due_date(issued_at: datetime, loan_days: int = LOAN_DAYS) -> datetime:
    """Returns the instant `loan_days` calendar days after `issued_at`."""
    return issued_at + timedelta(days=loan_days)


def overdue_days(due: datetime, as_of: datetime) -> int:
    """Days `as_of` lies past `due`, rounded up to whole days. Never negative."""
    late = ensure_aware(as_of) - ensure_aware(due)
    if late <= timedelta(0):
        return 0
    days = late // ONE_DAY
    if late % ONE_DAY:
        days += 1
    return days


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    # Older Python versions do not accept the trailing "Z"
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    return ensure_aware(datetime.fromisoformat(text))


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_aware(value).isoformat()


def ensure_aware(value: datetime) -> datetime:
    # Naive timestamps are read as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
