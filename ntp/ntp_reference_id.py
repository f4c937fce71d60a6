"""The four-byte reference identifier of an NTP header."""

import ipaddress
from dataclasses import dataclass

from ntp_errors import NTPLengthError, NTPPreconditionError


REFERENCE_ID_LENGTH = 4


# mccole: referenceid
@dataclass(frozen=True)
class NTPReferenceId:
    """Opaque on the wire; its meaning depends on the stratum.

    Stratum 0 (kiss-o'-death) and 1 (primary) servers put an ASCII code
    here such as "RATE" or "GPS". Secondary servers put the IPv4 address
    of their upstream server.
    """

    value: bytes = bytes(REFERENCE_ID_LENGTH)

    def __post_init__(self):
        if not isinstance(self.value, (bytes, bytearray, memoryview)):
            raise NTPPreconditionError(
                f"reference id must be bytes, not {type(self.value).__name__}"
            )
        if len(self.value) != REFERENCE_ID_LENGTH:
            raise NTPLengthError(
                f"reference id must be exactly {REFERENCE_ID_LENGTH} bytes, "
                f"got {len(self.value)}"
            )
        object.__setattr__(self, "value", bytes(self.value))

    @classmethod
    def from_text(cls, code: str) -> "NTPReferenceId":
        """Build from an ASCII code of up to four characters, NUL padded."""
        try:
            data = code.encode("ascii")
        except UnicodeEncodeError as exc:
            raise NTPPreconditionError(f"reference code {code!r} is not ASCII") from exc
        if len(data) > REFERENCE_ID_LENGTH:
            raise NTPLengthError(f"reference code {code!r} is longer than 4 characters")
        return cls(data.ljust(REFERENCE_ID_LENGTH, b"\0"))

    @classmethod
    def from_ipv4(cls, address: str) -> "NTPReferenceId":
        try:
            packed = ipaddress.IPv4Address(address).packed
        except ipaddress.AddressValueError as exc:
            raise NTPPreconditionError(f"{address!r} is not an IPv4 address") from exc
        return cls(packed)

    def as_text(self) -> str:
        """The identifier as an ASCII code with padding stripped."""
        return self.value.rstrip(b"\0").decode("ascii", errors="replace")

    def as_ipv4(self) -> str:
        return str(ipaddress.IPv4Address(self.value))

    def describe(self, stratum: int) -> str:
        """Human-readable form for a header with the given stratum."""
        if stratum <= 1:
            return self.as_text()
        return self.as_ipv4()


# mccole: /referenceid
