"""OData query helpers for Acumatica's contract-based REST API."""

from datetime import date, datetime, time, timezone
from typing import Optional, Union


DateLike = Union[date, datetime, str]


def to_utc_naive(value: datetime) -> datetime:
    """Convert aware datetimes to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_boundary(value: DateLike, end_of_day: bool = False) -> datetime:
    """Turn a request date ("2024-05-01" or ISO timestamp) into a window bound.

    Bare dates become midnight, or 23:59:59 when ``end_of_day`` is set, so
    an end date includes the whole day.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            value = date.fromisoformat(text)
        else:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            value = datetime.fromisoformat(text)
    if isinstance(value, datetime):
        return to_utc_naive(value)
    return datetime.combine(value, time(23, 59, 59) if end_of_day else time.min)


def format_datetimeoffset(value: datetime) -> str:
    """Format a timestamp as an Acumatica date literal, truncated to seconds."""
    value = to_utc_naive(value).replace(microsecond=0)
    return f"datetimeoffset'{value.strftime('%Y-%m-%dT%H:%M:%S')}'"


def quote(value: str) -> str:
    """Quote a string literal for $filter."""
    return "'" + str(value).replace("'", "''") + "'"


def modified_since(since: datetime, field: str = "LastModifiedDateTime") -> str:
    return f"{field} gt {format_datetimeoffset(since)}"


def date_between(start: datetime, end: datetime, field: str = "LastModifiedDateTime") -> str:
    """Inclusive range filter on ``field``."""
    return f"{field} ge {format_datetimeoffset(start)} and {field} le {format_datetimeoffset(end)}"


def and_filters(*parts: Optional[str]) -> Optional[str]:
    present = [p for p in parts if p]
    return " and ".join(present) if present else None
