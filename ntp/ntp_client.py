"""Query an NTP server over UDP."""

import logging
import socket
from datetime import datetime, timezone
from typing import Callable

from ntp_constants import (
    DEFAULT_PORT,
    MAX_STRATUM,
    MAX_VERSION,
    MIN_VERSION,
    PACKET_SIZE,
    RECEIVE_BUFFER_SIZE,
    NTPMode,
)
from ntp_errors import NTPResponseError, NTPTransportError
from ntp_message import NTPPacket, NTPSample
from ntp_timestamp import NTPTimestamp, require_absolute


log = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def check_response(request: NTPPacket, response: NTPPacket) -> None:
    """Raise NTPResponseError unless `response` answers `request`."""
    if response.mode not in (NTPMode.SERVER, NTPMode.BROADCAST):
        raise NTPResponseError(f"unexpected reply mode {response.mode.name}")
    if not MIN_VERSION <= response.version <= MAX_VERSION:
        raise NTPResponseError(f"unsupported reply version {response.version}")
    if response.is_kiss_of_death:
        raise NTPResponseError(f"server sent kiss-o'-death {response.kiss_code!r}")
    if response.stratum > MAX_STRATUM:
        raise NTPResponseError(f"server is unsynchronized (stratum {response.stratum})")
    if response.origin_timestamp != request.transmit_timestamp:
        raise NTPResponseError("reply does not echo the request's transmit timestamp")


# mccole: ntpclient
class NTPClient:
    """Sends one request per call and waits for one reply.

    Every call opens its own socket and closes it before returning, so a
    single client may be shared between threads. `timeout` is in seconds;
    None waits forever.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.clock = clock or utc_now

    def send(self, packet: NTPPacket) -> NTPPacket:
        """Send `packet` and return the decoded reply, unvalidated."""
        data = packet.to_bytes()

        try:
            family, _, _, _, address = socket.getaddrinfo(
                self.host, self.port, 0, socket.SOCK_DGRAM
            )[0]
        except socket.gaierror as exc:
            raise NTPTransportError(f"cannot resolve {self.host}: {exc}") from exc

        try:
            with socket.socket(family, socket.SOCK_DGRAM) as sock:
                sock.settimeout(self.timeout)
                sock.connect(address)
                sent = sock.send(data)
                if sent < len(data):
                    raise NTPTransportError(f"sent {sent} of {len(data)} bytes")
                log.debug("sent %d bytes to %s:%s", sent, self.host, self.port)

                reply = sock.recv(RECEIVE_BUFFER_SIZE)
        except socket.timeout as exc:
            raise NTPTransportError(
                f"no reply from {self.host}:{self.port} within {self.timeout} s"
            ) from exc
        except OSError as exc:
            raise NTPTransportError(f"exchange with {self.host}:{self.port} failed: {exc}") from exc

        log.debug("received %d bytes from %s:%s", len(reply), self.host, self.port)
        if len(reply) < PACKET_SIZE:
            raise NTPTransportError(f"short reply: {len(reply)} bytes")
        return NTPPacket.from_bytes(reply)

    def get_sample(self) -> NTPSample:
        """Run one exchange and return its four absolute timestamps."""
        now = self.clock()
        require_absolute(now, "clock()")
        request = NTPPacket(transmit_timestamp=NTPTimestamp.from_datetime(now))

        response = self.send(request)
        destination = self.clock()

        check_response(request, response)
        sample = response.to_sample(destination)
        log.debug(
            "offset %.6f s, delay %.6f s",
            sample.calculate_offset().total_seconds(),
            sample.calculate_delay().total_seconds(),
        )
        return sample

    def get_time(self) -> datetime:
        """Estimate the true time at the moment the reply arrived."""
        return self.get_sample().synchronized_time()


# mccole: /ntpclient


def main(argv: list[str] | None = None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Query an NTP server once.")
    parser.add_argument("host", help="NTP server host name or address")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="UDP port")
    parser.add_argument(
        "--timeout", type=float, default=5.0, help="seconds to wait for the reply"
    )
    parser.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="logging verbosity",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s")
    logging.getLogger().setLevel(getattr(logging, args.log_level.upper()))

    client = NTPClient(args.host, port=args.port, timeout=args.timeout)
    try:
        sample = client.get_sample()
    except (NTPTransportError, NTPResponseError) as exc:
        log.error("%s", exc)
        return 1

    print(f"time:   {sample.synchronized_time().isoformat()}")
    print(f"offset: {sample.calculate_offset().total_seconds():+.6f} s")
    print(f"delay:  {sample.calculate_delay().total_seconds():.6f} s")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
