"""
Datetime utilities for the client intelligence services.
"""
from datetime import datetime, timezone
from typing import Optional, Union


def make_aware(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure datetime is timezone-aware (UTC if naive).

    Args:
        dt: A datetime object that may or may not have timezone info

    Returns:
        The same datetime with UTC timezone if it was naive,
        or the original timezone-aware datetime, or None if input was None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a stored ISO timestamp (with or without a Z suffix) into an aware datetime.

    Unparseable strings come back as None rather than raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return make_aware(value)
    try:
        return make_aware(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None
