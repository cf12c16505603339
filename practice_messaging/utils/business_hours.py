"""
Business Hours Policy
Decide whether an instant falls inside the firm's service hours.

Service hours: Monday-Friday 09:00-18:00, Saturday 09:00-12:00, closed Sunday.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Union, Dict, Tuple
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

# weekday() -> [start_hour, end_hour)
SERVICE_HOURS: Dict[int, Tuple[int, int]] = {
    0: (9, 18),
    1: (9, 18),
    2: (9, 18),
    3: (9, 18),
    4: (9, 18),
    5: (9, 12),
}

Timestamp = Union[datetime, int, float, str, None]


def _resolve_timezone(tz_name: Optional[str]) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name or DEFAULT_TIMEZONE)
    except Exception as e:
        logger.error(f"❌ Invalid timezone '{tz_name}': {e}, using UTC")
        return ZoneInfo("UTC")


def to_datetime(value: Timestamp) -> Optional[datetime]:
    """
    Normalize the accepted timestamp shapes to an aware datetime.

    Accepts datetimes (naive ones are read as UTC), unix epoch seconds as
    int/float/digit string (the provider's webhook format) and ISO 8601
    strings. Anything else yields None.
    """
    if value is None:
        return datetime.now(timezone.utc)

    if isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    try:
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=timezone.utc)

        text = str(value).strip()
        if not text:
            return None
        if text.lstrip("-").replace(".", "", 1).isdigit():
            return datetime.fromtimestamp(float(text), tz=timezone.utc)

        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Unparseable timestamp {value!r}: {e}")
        return None


def is_business_hours(timestamp: Timestamp = None, tz_name: Optional[str] = DEFAULT_TIMEZONE) -> bool:
    """
    Check whether `timestamp` falls inside service hours in `tz_name`.

    Args:
        timestamp: datetime, epoch seconds (int/float/str), ISO string, or
            None for "now"
        tz_name: IANA timezone used to read the local weekday and hour

    Returns:
        True inside service hours, False otherwise (including invalid input)

    Examples:
        >>> is_business_hours(datetime(2024, 6, 3, 10, tzinfo=ZoneInfo("America/Sao_Paulo")))
        True  # Monday 10:00
        >>> is_business_hours(datetime(2024, 6, 8, 13, tzinfo=ZoneInfo("America/Sao_Paulo")))
        False  # Saturday 13:00
    """
    moment = to_datetime(timestamp)
    if moment is None:
        return False

    local_time = moment.astimezone(_resolve_timezone(tz_name))
    window = SERVICE_HOURS.get(local_time.weekday())
    if window is None:
        return False

    start_hour, end_hour = window
    return start_hour <= local_time.hour < end_hour
