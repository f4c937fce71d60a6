"""64-bit NTP timestamps and era disambiguation."""

import math
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from ntp_constants import ERA_SECONDS, FRACTION_SCALE, HALF_ERA_SECONDS, NTP_EPOCH
from ntp_errors import NTPLengthError, NTPPreconditionError, NTPRangeError


MICROSECONDS = 1_000_000
MAX_RAW_VALUE = (1 << 64) - 1
ERA_MICROSECONDS = ERA_SECONDS * MICROSECONDS
HALF_ERA_MICROSECONDS = HALF_ERA_SECONDS * MICROSECONDS


class Rounding(Enum):
    """How sub-microsecond remainders are resolved when scaling fractions."""

    TRUNCATE = "truncate"
    NEAREST = "nearest"


def require_absolute(instant: datetime, name: str = "instant") -> None:
    """Reject anything that is not a timezone-aware datetime."""
    if not isinstance(instant, datetime):
        raise NTPPreconditionError(f"{name} must be a datetime, not {type(instant).__name__}")
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise NTPPreconditionError(f"{name} must be timezone-aware")


def _elapsed_microseconds(instant: datetime, epoch: datetime) -> int:
    delta = instant - epoch
    return (delta.days * 86_400 + delta.seconds) * MICROSECONDS + delta.microseconds


def _scale(numerator: int, denominator: int, rounding: Rounding) -> int:
    if rounding is Rounding.NEAREST:
        return (2 * numerator + denominator) // (2 * denominator)
    return numerator // denominator


def _to_instant(elapsed_us: int, epoch: datetime) -> datetime:
    try:
        return epoch + timedelta(microseconds=elapsed_us)
    except OverflowError as exc:
        raise NTPRangeError("decoded instant is past the last representable datetime") from exc


def _split_raw(raw: int, rounding: Rounding) -> tuple[int, int]:
    """Return (era seconds, microseconds) held in a raw timestamp."""
    if not 0 <= raw <= MAX_RAW_VALUE:
        raise NTPRangeError(f"raw timestamp {raw} does not fit in 64 bits")
    seconds = raw >> 32
    fraction = raw & 0xFFFFFFFF
    return seconds, _scale(fraction * MICROSECONDS, FRACTION_SCALE, rounding)


def _reference_elapsed(reference: datetime, epoch: datetime) -> int:
    require_absolute(reference, "reference")
    elapsed = _elapsed_microseconds(reference, epoch)
    if elapsed < 0:
        raise NTPRangeError("reference must not be before the NTP epoch")
    return elapsed


# mccole: encode
def encode(
    instant: datetime,
    epoch: datetime = NTP_EPOCH,
    rounding: Rounding = Rounding.NEAREST,
) -> int:
    """Encode an absolute instant as a raw 64-bit NTP timestamp.

    The seconds field holds the elapsed whole seconds modulo 2**32, so
    the result does not say which era it belongs to.
    """
    require_absolute(instant)
    elapsed = _elapsed_microseconds(instant, epoch)
    if elapsed < 0:
        raise NTPRangeError("instant must not be before the NTP epoch")

    seconds, micros = divmod(elapsed, MICROSECONDS)
    fraction = _scale(micros * FRACTION_SCALE, MICROSECONDS, rounding)
    return ((seconds % ERA_SECONDS) << 32) | fraction
# mccole: /encode


# mccole: decode
def decode(
    raw: int,
    reference: datetime,
    epoch: datetime = NTP_EPOCH,
    rounding: Rounding = Rounding.NEAREST,
) -> datetime:
    """Decode a raw timestamp to the instant closest to `reference`.

    The eras before, at and after the reference's era are tried and the
    candidate nearest the reference wins. On an exact tie the earlier
    era is kept.
    """
    seconds, micros = _split_raw(raw, rounding)
    ref_elapsed = _reference_elapsed(reference, epoch)
    ref_era = ref_elapsed // ERA_MICROSECONDS

    best = None
    best_diff = None
    for era in range(max(ref_era - 1, 0), ref_era + 2):
        candidate = (era * ERA_SECONDS + seconds) * MICROSECONDS + micros
        diff = abs(candidate - ref_elapsed)
        if best_diff is None or diff < best_diff:
            best, best_diff = candidate, diff

    return _to_instant(best, epoch)
# mccole: /decode


def decode_by_half_era(
    raw: int,
    reference: datetime,
    epoch: datetime = NTP_EPOCH,
    rounding: Rounding = Rounding.NEAREST,
) -> datetime:
    """Closed-form equivalent of `decode`.

    Place the wire seconds in the reference's era, then move one era
    toward the reference if that leaves it half an era or more away.
    """
    seconds, micros = _split_raw(raw, rounding)
    ref_elapsed = _reference_elapsed(reference, epoch)

    base = (ref_elapsed // ERA_MICROSECONDS) * ERA_MICROSECONDS
    base += seconds * MICROSECONDS + micros

    # >= on the way down, > on the way up: ties go to the earlier era.
    if base - ref_elapsed >= HALF_ERA_MICROSECONDS and base >= ERA_MICROSECONDS:
        base -= ERA_MICROSECONDS
    elif ref_elapsed - base > HALF_ERA_MICROSECONDS:
        base += ERA_MICROSECONDS

    return _to_instant(base, epoch)


@dataclass(frozen=True, order=True)
class NTPTimestamp:
    """A raw 64-bit NTP timestamp: 32 bits of seconds, 32 of fraction.

    Instances compare by raw value. That ordering is only meaningful
    inside one era; timestamps on either side of a rollover must be
    decoded to instants before they are compared.
    """

    raw_value: int = 0

    def __post_init__(self):
        if not isinstance(self.raw_value, int):
            raise NTPPreconditionError("raw_value must be an int")
        if not 0 <= self.raw_value <= MAX_RAW_VALUE:
            raise NTPRangeError(f"raw timestamp {self.raw_value} does not fit in 64 bits")

    @classmethod
    def from_datetime(
        cls,
        instant: datetime,
        epoch: datetime = NTP_EPOCH,
        rounding: Rounding = Rounding.NEAREST,
    ) -> "NTPTimestamp":
        """Encode an aware datetime."""
        return cls(encode(instant, epoch, rounding))

    @classmethod
    def from_seconds_since_epoch(
        cls, seconds: float, rounding: Rounding = Rounding.NEAREST
    ) -> "NTPTimestamp":
        """Encode a (possibly fractional) count of seconds since 1900."""
        if seconds < 0:
            raise NTPRangeError("seconds since the NTP epoch must not be negative")
        whole = math.floor(seconds)
        scaled = (seconds - whole) * FRACTION_SCALE
        fraction = round(scaled) if rounding is Rounding.NEAREST else math.floor(scaled)
        return cls(((whole % ERA_SECONDS) << 32) | fraction)

    @classmethod
    def from_bytes(cls, data: bytes) -> "NTPTimestamp":
        """Read eight big-endian bytes."""
        if len(data) < 8:
            raise NTPLengthError(f"timestamp needs 8 bytes, got {len(data)}")
        (raw,) = struct.unpack_from("!Q", data)
        return cls(raw)

    def to_bytes(self) -> bytes:
        return struct.pack("!Q", self.raw_value)

    def to_absolute_instant(
        self,
        reference: datetime,
        epoch: datetime = NTP_EPOCH,
        rounding: Rounding = Rounding.NEAREST,
    ) -> datetime:
        """Recover the UTC instant nearest `reference` (within ~68 years)."""
        return decode(self.raw_value, reference, epoch, rounding)

    @property
    def seconds(self) -> int:
        """Seconds since the start of the era."""
        return self.raw_value >> 32

    @property
    def fraction(self) -> int:
        return self.raw_value & 0xFFFFFFFF

    @property
    def fractional_seconds(self) -> float:
        return self.fraction / FRACTION_SCALE

    def is_zero(self) -> bool:
        """Unset timestamps are sent as all zero bits."""
        return self.raw_value == 0

    def __int__(self) -> int:
        return self.raw_value

    def __str__(self) -> str:
        return f"NTPTimestamp({self.seconds}.{self.fraction:08x})"
