"""NTP short format: 16 bits of seconds, 16 bits of fraction."""

from ntp_constants import SHORT_SCALE
from ntp_errors import NTPRangeError


MAX_SHORT = 0xFFFFFFFF


def short_to_seconds(value: int) -> float:
    """Convert a 32-bit short-format value (root delay, dispersion) to seconds."""
    if not 0 <= value <= MAX_SHORT:
        raise NTPRangeError(f"short-format value {value} does not fit in 32 bits")
    return value / SHORT_SCALE


def seconds_to_short(seconds: float) -> int:
    """Convert seconds to the nearest short-format value."""
    value = round(seconds * SHORT_SCALE)
    if not 0 <= value <= MAX_SHORT:
        raise NTPRangeError(f"{seconds} s cannot be held in NTP short format")
    return value
