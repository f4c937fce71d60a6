from dataclasses import replace
from datetime import datetime, timedelta

from asimpy import Process, Queue
from ntp_constants import LeapIndicator, NTPMode
from ntp_errors import NTPLengthError
from ntp_message import NTPPacket
from ntp_reference_id import NTPReferenceId
from ntp_short import seconds_to_short
from ntp_timestamp import NTPTimestamp


# mccole: ntpserver
class NTPServer(Process):
    """A simulated NTP server that answers wire-encoded client requests."""

    def init(
        self,
        name: str,
        stratum: int,
        request_queue: Queue,
        base_time: datetime,
        clock_offset: float = 0.0,
        network_delay: float = 0.1,
        processing_delay: float = 0.001,
        reference_code: str = "SIM",
        drop_requests: bool = False,
    ):
        self.name = name
        self.stratum = stratum
        self.request_queue = request_queue
        self.base_time = base_time
        self.clock_offset = clock_offset
        self.network_delay = network_delay
        self.processing_delay = processing_delay
        self.reference_id = NTPReferenceId.from_text(reference_code)
        self.drop_requests = drop_requests

        # Statistics
        self.requests_served = 0
        self.requests_dropped = 0

    def get_local_time(self) -> datetime:
        """Get current time according to the server's clock."""
        return self.base_time + timedelta(seconds=self.now + self.clock_offset)

    async def run(self):
        """Process incoming NTP requests."""
        while True:
            client_queue, data = await self.request_queue.get()

            # Record server receive time (t2)
            receive_time = self.get_local_time()

            request = self._decode(data)
            if request is None:
                self.requests_dropped += 1
                continue

            await self.timeout(self.processing_delay)

            # Record server transmit time (t3)
            response = self._build_response(request, receive_time, self.get_local_time())

            print(
                f"[{self.now:.3f}] {self.name} (stratum {self.stratum}): "
                f"Responding to request (t2={receive_time.isoformat()})"
            )

            await self.timeout(self.network_delay)
            await client_queue.put(response.to_bytes())

            self.requests_served += 1

    def _decode(self, data: bytes) -> NTPPacket | None:
        if self.drop_requests:
            print(f"[{self.now:.3f}] {self.name}: Ignoring request")
            return None
        try:
            request = NTPPacket.from_bytes(data)
        except NTPLengthError as exc:
            print(f"[{self.now:.3f}] {self.name}: Dropping malformed request ({exc})")
            return None
        if request.mode != NTPMode.CLIENT:
            print(f"[{self.now:.3f}] {self.name}: Dropping {request.mode.name} request")
            return None
        return request

    def _build_response(
        self, request: NTPPacket, receive_time: datetime, transmit_time: datetime
    ) -> NTPPacket:
        return replace(
            request,
            leap_indicator=LeapIndicator.NO_WARNING,
            mode=NTPMode.SERVER,
            stratum=self.stratum,
            precision=-20,
            root_delay=seconds_to_short(self.network_delay * 2),
            root_dispersion=seconds_to_short(self.processing_delay),
            reference_id=self.reference_id,
            reference_timestamp=NTPTimestamp.from_datetime(self.base_time),
            origin_timestamp=request.transmit_timestamp,
            receive_timestamp=NTPTimestamp.from_datetime(receive_time),
            transmit_timestamp=NTPTimestamp.from_datetime(transmit_time),
        )


# mccole: /ntpserver
