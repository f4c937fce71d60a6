"""Exceptions raised by the NTP codecs and clients."""


class NTPError(Exception):
    """Base class for every NTP error."""


class NTPRangeError(NTPError, ValueError):
    """A value lies outside what the wire format or calendar can hold."""


class NTPPreconditionError(NTPError, ValueError):
    """An argument does not meet the requirements of the operation."""


class NTPLengthError(NTPPreconditionError):
    """A buffer or field has the wrong number of bytes."""


class NTPTransportError(NTPError):
    """Sending or receiving a datagram failed."""


class NTPResponseError(NTPError):
    """A server reply was decoded but cannot be trusted."""
