"""
Time Utilities

Binance reports and expects times as milliseconds since the Unix epoch.
Signed requests carry a millisecond `timestamp` that the venue compares
against its own clock using the call's `recvWindow`, so the value must be
taken from the wall clock at signing time, with millisecond precision.

The utilities in this module produce those timestamps and convert the
venue's millisecond values into timezone-aware UTC datetimes.
"""

import time
from datetime import datetime, timezone
from typing import Union


def timestamp_ms() -> int:
    """
    Current wall-clock time in milliseconds since epoch.

    Unlike truncating a datetime to whole seconds, this keeps the
    sub-second part, which the venue's receive window is measured against.

    Example:
        >>> timestamp_ms()
        1704110400123
    """
    return int(time.time() * 1000)


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12: assumed to be milliseconds
        - Otherwise: assumed to be seconds

    Args:
        timestamp: Unix timestamp in seconds or milliseconds

    Returns:
        datetime: Timezone-aware datetime object in UTC

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def elapsed_ms(start: float, end: float) -> float:
    """
    Milliseconds between two time.perf_counter() readings.

    Example:
        >>> elapsed_ms(10.0, 10.25)
        250.0
    """
    return (end - start) * 1000.0
