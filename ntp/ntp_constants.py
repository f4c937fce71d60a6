"""Protocol constants and header enumerations for NTP."""

from datetime import datetime, timezone
from enum import IntEnum


NTP_EPOCH = datetime(1900, 1, 1, tzinfo=timezone.utc)

ERA_SECONDS = 1 << 32
HALF_ERA_SECONDS = 1 << 31
FRACTION_SCALE = 0xFFFFFFFF  # uint32 max, not 2**32
SHORT_SCALE = 1 << 16  # 16.16 fixed point for delay and dispersion

PACKET_SIZE = 48
DEFAULT_PORT = 123
RECEIVE_BUFFER_SIZE = 1024

MIN_VERSION = 3
MAX_VERSION = 4
DEFAULT_VERSION = 4
MAX_STRATUM = 15


class LeapIndicator(IntEnum):
    """Leap second warning carried in the top two bits of byte 0."""

    NO_WARNING = 0
    LAST_MINUTE_61 = 1  # Last minute of the day has 61 seconds
    LAST_MINUTE_59 = 2  # Last minute of the day has 59 seconds
    ALARM = 3  # Clock unsynchronized


class NTPMode(IntEnum):
    """Association mode carried in the low three bits of byte 0."""

    RESERVED = 0
    SYMMETRIC_ACTIVE = 1
    SYMMETRIC_PASSIVE = 2
    CLIENT = 3
    SERVER = 4
    BROADCAST = 5
    CONTROL_MESSAGE = 6
    PRIVATE_USE = 7
