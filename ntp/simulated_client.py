from datetime import datetime, timedelta

from asimpy import FirstOf, Process, Queue, Timeout
from ntp_message import NTPPacket
from ntp_timestamp import NTPTimestamp


# mccole: simclient
class SimulatedNTPClient(Process):
    """An NTP client that estimates its clock offset from a simulated server.

    Requests and replies cross the simulated network as 48-byte wire
    packets. The client records each estimate but never corrects its
    own clock.
    """

    def init(
        self,
        name: str,
        server_queue: Queue,
        base_time: datetime,
        sync_interval: float,
        network_delay: float = 0.1,
        initial_offset: float = 0.0,
        deadline: float | None = None,
    ):
        self.name = name
        self.server_queue = server_queue
        self.base_time = base_time
        self.sync_interval = sync_interval
        self.network_delay = network_delay
        self.deadline = deadline

        # Client's local clock offset from true time
        self.clock_offset = initial_offset
        self.response_queue = Queue(self._env)

        # Statistics
        self.syncs_performed = 0
        self.timeouts = 0
        self.stale_replies = 0
        self.offset_history: list[timedelta] = []
        self.delay_history: list[timedelta] = []
        self.time_history: list[datetime] = []

    def get_local_time(self) -> datetime:
        """Get current time according to client's local clock."""
        return self.base_time + timedelta(seconds=self.now + self.clock_offset)

    async def run(self):
        """Periodically sample the server."""
        while True:
            await self.timeout(self.sync_interval)
            await self._sync_with_server()

    async def _sync_with_server(self):
        """Execute one request/response exchange."""
        request = NTPPacket(
            transmit_timestamp=NTPTimestamp.from_datetime(self.get_local_time())
        )

        print(
            f"[{self.now:.3f}] {self.name}: Sending request "
            f"(local_time={self.get_local_time().isoformat()})"
        )

        await self.timeout(self.network_delay)
        await self.server_queue.put((self.response_queue, request.to_bytes()))

        sent_at = self.now
        while True:
            data = await self._receive(sent_at)
            if data is None:
                self.timeouts += 1
                print(f"[{self.now:.3f}] {self.name}: No reply before deadline")
                return

            # Record destination time (t4) before decoding
            destination = self.get_local_time()
            response = NTPPacket.from_bytes(data)

            # A reply that missed an earlier deadline may still be queued
            if response.origin_timestamp == request.transmit_timestamp:
                break
            self.stale_replies += 1
            print(f"[{self.now:.3f}] {self.name}: Discarding reply to an earlier request")

        sample = response.to_sample(destination)
        offset = sample.calculate_offset()
        delay = sample.calculate_delay()

        self.syncs_performed += 1
        self.offset_history.append(offset)
        self.delay_history.append(delay)
        self.time_history.append(sample.synchronized_time())

        print(
            f"[{self.now:.3f}] {self.name}: Received reply "
            f"(offset={offset.total_seconds():.6f}, delay={delay.total_seconds():.6f})"
        )

    async def _receive(self, sent_at: float) -> bytes | None:
        """Wait for the next reply, or None once the deadline has passed."""
        if self.deadline is None:
            return await self.response_queue.get()

        remaining = sent_at + self.deadline - self.now
        if remaining <= 0:
            return None

        name, value = await FirstOf(
            self._env,
            reply=self.response_queue.get(),
            timeout=Timeout(self._env, remaining),
        )
        if name == "reply":
            return value
        return None


# mccole: /simclient
