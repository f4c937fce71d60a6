"""The 48-byte NTP packet and the offset/delay arithmetic built on it."""

import struct
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ntp_constants import DEFAULT_VERSION, PACKET_SIZE, LeapIndicator, NTPMode
from ntp_errors import NTPLengthError, NTPPreconditionError
from ntp_reference_id import NTPReferenceId
from ntp_short import short_to_seconds
from ntp_timestamp import NTPTimestamp, Rounding, require_absolute


# Byte 0, stratum, poll, precision, root delay, root dispersion,
# reference id, then reference/origin/receive/transmit timestamps.
PACKET_FORMAT = "!BBbbII4sQQQQ"


def clock_offset(
    origin: datetime, receive: datetime, transmit: datetime, destination: datetime
) -> timedelta:
    """offset = ((t2 - t1) + (t3 - t4)) / 2"""
    _require_sample(origin, receive, transmit, destination)
    return ((receive - origin) + (transmit - destination)) / 2


def round_trip_delay(
    origin: datetime, receive: datetime, transmit: datetime, destination: datetime
) -> timedelta:
    """delay = (t4 - t1) - (t3 - t2)

    A negative result is returned as-is; it signals an unreliable sample.
    """
    _require_sample(origin, receive, transmit, destination)
    return (destination - origin) - (transmit - receive)


def synchronized_time(
    origin: datetime, receive: datetime, transmit: datetime, destination: datetime
) -> datetime:
    """Estimated true time at the moment the reply arrived."""
    return destination + clock_offset(origin, receive, transmit, destination)


def _require_sample(*instants: datetime) -> None:
    for name, instant in zip(("origin", "receive", "transmit", "destination"), instants):
        require_absolute(instant, name)


# mccole: ntpsample
@dataclass(frozen=True)
class NTPSample:
    """The four absolute timestamps of one request/response exchange."""

    t1: datetime  # Client send time (origin)
    t2: datetime  # Server receive time
    t3: datetime  # Server transmit time
    t4: datetime  # Client receive time (destination)

    def calculate_offset(self) -> timedelta:
        return clock_offset(self.t1, self.t2, self.t3, self.t4)

    def calculate_delay(self) -> timedelta:
        return round_trip_delay(self.t1, self.t2, self.t3, self.t4)

    def synchronized_time(self) -> datetime:
        return synchronized_time(self.t1, self.t2, self.t3, self.t4)


# mccole: /ntpsample


# mccole: ntppacket
@dataclass(frozen=True)
class NTPPacket:
    """An NTP header as sent on the wire.

    No range checks happen on decode: a reply with version 7 or stratum
    200 comes back exactly as it was sent. Judging whether a reply is
    usable is up to the caller.
    """

    leap_indicator: LeapIndicator = LeapIndicator.NO_WARNING
    version: int = DEFAULT_VERSION
    mode: NTPMode = NTPMode.CLIENT
    stratum: int = 0
    poll: int = 0  # log2 seconds between messages
    precision: int = 0  # log2 seconds of clock precision, e.g. -18 ~ 1 us
    root_delay: int = 0  # NTP short format
    root_dispersion: int = 0  # NTP short format
    reference_id: NTPReferenceId = field(default_factory=NTPReferenceId)
    reference_timestamp: NTPTimestamp = field(default_factory=NTPTimestamp)
    origin_timestamp: NTPTimestamp = field(default_factory=NTPTimestamp)
    receive_timestamp: NTPTimestamp = field(default_factory=NTPTimestamp)
    transmit_timestamp: NTPTimestamp = field(default_factory=NTPTimestamp)

    def to_bytes(self) -> bytes:
        """Serialize to exactly 48 big-endian bytes."""
        for name, value, limit in (
            ("leap_indicator", self.leap_indicator, 0x3),
            ("version", self.version, 0x7),
            ("mode", self.mode, 0x7),
        ):
            if not 0 <= value <= limit:
                raise NTPPreconditionError(f"{name} {value} does not fit in its bit field")
        first = (int(self.leap_indicator) << 6) | (self.version << 3) | int(self.mode)
        try:
            return struct.pack(
                PACKET_FORMAT,
                first,
                self.stratum,
                self.poll,
                self.precision,
                self.root_delay,
                self.root_dispersion,
                self.reference_id.value,
                self.reference_timestamp.raw_value,
                self.origin_timestamp.raw_value,
                self.receive_timestamp.raw_value,
                self.transmit_timestamp.raw_value,
            )
        except struct.error as exc:
            raise NTPPreconditionError(f"packet field out of range: {exc}") from exc

    def write_into(self, buffer: bytearray, offset: int = 0) -> None:
        """Serialize into a writable buffer; nothing is written on failure."""
        if offset < 0:
            raise NTPPreconditionError(f"offset must not be negative, got {offset}")
        if len(buffer) - offset < PACKET_SIZE:
            raise NTPLengthError(
                f"buffer has {max(len(buffer) - offset, 0)} bytes, need {PACKET_SIZE}"
            )
        data = self.to_bytes()
        buffer[offset : offset + PACKET_SIZE] = data

    @classmethod
    def from_bytes(cls, data: bytes) -> "NTPPacket":
        """Decode the first 48 bytes of `data`; anything after is ignored."""
        if len(data) < PACKET_SIZE:
            raise NTPLengthError(
                f"NTP packet needs {PACKET_SIZE} bytes, got {len(data)}"
            )
        (
            first,
            stratum,
            poll,
            precision,
            root_delay,
            root_dispersion,
            reference_id,
            reference_ts,
            origin_ts,
            receive_ts,
            transmit_ts,
        ) = struct.unpack_from(PACKET_FORMAT, data)

        return cls(
            leap_indicator=LeapIndicator((first >> 6) & 0x3),
            version=(first >> 3) & 0x7,
            mode=NTPMode(first & 0x7),
            stratum=stratum,
            poll=poll,
            precision=precision,
            root_delay=root_delay,
            root_dispersion=root_dispersion,
            reference_id=NTPReferenceId(reference_id),
            reference_timestamp=NTPTimestamp(reference_ts),
            origin_timestamp=NTPTimestamp(origin_ts),
            receive_timestamp=NTPTimestamp(receive_ts),
            transmit_timestamp=NTPTimestamp(transmit_ts),
        )

    @property
    def root_delay_seconds(self) -> float:
        return short_to_seconds(self.root_delay)

    @property
    def root_dispersion_seconds(self) -> float:
        return short_to_seconds(self.root_dispersion)

    @property
    def is_kiss_of_death(self) -> bool:
        """Stratum 0 in a reply means the server refused to serve time."""
        return self.mode in (NTPMode.SERVER, NTPMode.BROADCAST) and self.stratum == 0

    @property
    def kiss_code(self) -> str | None:
        if not self.is_kiss_of_death:
            return None
        return self.reference_id.as_text()

    def to_sample(
        self,
        destination: datetime,
        reference: datetime | None = None,
        rounding: Rounding = Rounding.NEAREST,
    ) -> NTPSample:
        """Decode origin, receive and transmit against a single reference.

        Decoding each field against a different "now" can put them in
        different eras near a rollover, so one reference is used for all
        three. It defaults to the destination instant.
        """
        require_absolute(destination, "destination")
        if reference is None:
            reference = destination
        return NTPSample(
            t1=self.origin_timestamp.to_absolute_instant(reference, rounding=rounding),
            t2=self.receive_timestamp.to_absolute_instant(reference, rounding=rounding),
            t3=self.transmit_timestamp.to_absolute_instant(reference, rounding=rounding),
            t4=destination,
        )

    def calculate_synchronized_time(
        self, destination: datetime, reference: datetime | None = None
    ) -> datetime:
        """Estimated true time at the moment this reply arrived."""
        return self.to_sample(destination, reference).synchronized_time()

    def calculate_round_trip_delay(
        self, destination: datetime, reference: datetime | None = None
    ) -> timedelta:
        return self.to_sample(destination, reference).calculate_delay()

    def calculate_offset(
        self, destination: datetime, reference: datetime | None = None
    ) -> timedelta:
        return self.to_sample(destination, reference).calculate_offset()

    def __str__(self) -> str:
        return (
            f"NTPPacket(v{self.version}, {NTPMode(int(self.mode) & 0x7).name}, "
            f"stratum={self.stratum}, "
            f"ref={self.reference_id.describe(self.stratum)})"
        )


# mccole: /ntppacket
