import socket
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from ntp_client import NTPClient, check_response, main
from ntp_constants import NTPMode
from ntp_errors import NTPResponseError, NTPTransportError
from ntp_message import NTPPacket
from ntp_reference_id import NTPReferenceId
from ntp_timestamp import NTPTimestamp


T1 = datetime(2024, 6, 15, 14, 30, 45, tzinfo=timezone.utc)
T4 = T1 + timedelta(seconds=0.11)
SERVER_AHEAD = timedelta(seconds=1)


class Responder(threading.Thread):
    """Answers a single datagram on the loopback interface."""

    def __init__(self, handler):
        super().__init__(daemon=True)
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.settimeout(5)
        self.port = self.sock.getsockname()[1]
        self.handler = handler
        self.requests = []

    def run(self):
        try:
            data, address = self.sock.recvfrom(1024)
        except socket.timeout:
            return
        self.requests.append(data)
        reply = self.handler(data)
        if reply is not None:
            self.sock.sendto(reply, address)

    def close(self):
        self.join(timeout=6)
        self.sock.close()


@pytest.fixture
def responder():
    started = []

    def start(handler):
        server = Responder(handler)
        server.start()
        started.append(server)
        return server

    yield start
    for server in started:
        server.close()


def server_reply(data, **overrides):
    """Reply as a server whose clock runs one second ahead, 50 ms each way."""
    request = NTPPacket.from_bytes(data)
    sent = request.transmit_timestamp.to_absolute_instant(T1)
    receive = sent + SERVER_AHEAD + timedelta(seconds=0.05)
    reply = NTPPacket(
        mode=NTPMode.SERVER,
        stratum=1,
        reference_id=NTPReferenceId.from_text("GPS"),
        origin_timestamp=request.transmit_timestamp,
        receive_timestamp=NTPTimestamp.from_datetime(receive),
        transmit_timestamp=NTPTimestamp.from_datetime(receive + timedelta(seconds=0.01)),
    )
    return replace(reply, **overrides).to_bytes()


def fixed_clock(*instants):
    times = iter(instants)
    return lambda: next(times)


def make_client(server, **kwargs):
    kwargs.setdefault("clock", fixed_clock(T1, T4))
    return NTPClient("127.0.0.1", port=server.port, timeout=2, **kwargs)


def test_send_returns_decoded_reply(responder):
    server = responder(server_reply)
    request = NTPPacket(transmit_timestamp=NTPTimestamp.from_datetime(T1))

    response = make_client(server).send(request)

    assert len(server.requests[0]) == 48
    assert response.mode is NTPMode.SERVER
    assert response.stratum == 1
    assert response.origin_timestamp == request.transmit_timestamp


def test_get_time_applies_offset(responder):
    server = responder(server_reply)
    assert make_client(server).get_time() == T4 + SERVER_AHEAD


def test_get_sample_reports_offset_and_delay(responder):
    server = responder(server_reply)
    sample = make_client(server).get_sample()
    assert sample.t1 == T1
    assert sample.t4 == T4
    assert sample.calculate_offset() == SERVER_AHEAD
    assert sample.calculate_delay() == timedelta(seconds=0.1)


def test_request_is_a_version_4_client_packet(responder):
    server = responder(server_reply)
    make_client(server).get_time()
    request = NTPPacket.from_bytes(server.requests[0])
    assert request.version == 4
    assert request.mode is NTPMode.CLIENT
    assert request.transmit_timestamp == NTPTimestamp.from_datetime(T1)


def test_short_reply_is_transport_error(responder):
    server = responder(lambda data: server_reply(data)[:47])
    with pytest.raises(NTPTransportError):
        make_client(server).send(NTPPacket())


def test_long_reply_is_truncated_to_header(responder):
    server = responder(lambda data: server_reply(data) + b"\0" * 20)
    assert make_client(server).send(NTPPacket()).stratum == 1


def test_timeout_is_transport_error(responder):
    server = responder(lambda data: None)
    client = NTPClient("127.0.0.1", port=server.port, timeout=0.2)
    with pytest.raises(NTPTransportError):
        client.send(NTPPacket())


def test_closed_port_is_transport_error():
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    with pytest.raises(NTPTransportError):
        NTPClient("127.0.0.1", port=port, timeout=0.5).send(NTPPacket())


def test_kiss_of_death_is_rejected(responder):
    server = responder(
        lambda data: server_reply(data, stratum=0, reference_id=NTPReferenceId.from_text("RATE"))
    )
    with pytest.raises(NTPResponseError, match="RATE"):
        make_client(server).get_time()


def test_mismatched_origin_is_rejected(responder):
    server = responder(lambda data: server_reply(data, origin_timestamp=NTPTimestamp(1)))
    with pytest.raises(NTPResponseError):
        make_client(server).get_time()


def test_check_response_mode():
    request = NTPPacket(transmit_timestamp=NTPTimestamp(5))
    good = NTPPacket(mode=NTPMode.SERVER, stratum=2, origin_timestamp=NTPTimestamp(5))
    check_response(request, good)
    check_response(request, replace(good, mode=NTPMode.BROADCAST))
    with pytest.raises(NTPResponseError):
        check_response(request, replace(good, mode=NTPMode.CLIENT))


def test_main_prints_estimate(responder, capsys):
    def reply_now(data):
        request = NTPPacket.from_bytes(data)
        now = NTPTimestamp.from_datetime(datetime.now(timezone.utc))
        return NTPPacket(
            mode=NTPMode.SERVER,
            stratum=1,
            origin_timestamp=request.transmit_timestamp,
            receive_timestamp=now,
            transmit_timestamp=now,
        ).to_bytes()

    server = responder(reply_now)
    assert main(["127.0.0.1", "--port", str(server.port), "--timeout", "2"]) == 0
    output = capsys.readouterr().out
    assert "offset:" in output
    assert "delay:" in output


def test_main_reports_failure(responder):
    server = responder(lambda data: None)
    assert main(["127.0.0.1", "--port", str(server.port), "--timeout", "0.2"]) == 1


@pytest.mark.parametrize("version", [2, 5])
def test_check_response_version(version):
    request = NTPPacket(transmit_timestamp=NTPTimestamp(5))
    reply = NTPPacket(
        mode=NTPMode.SERVER, version=version, stratum=2, origin_timestamp=NTPTimestamp(5)
    )
    with pytest.raises(NTPResponseError, match="version"):
        check_response(request, reply)
    check_response(request, replace(reply, version=3))


def test_check_response_unsynchronized_stratum():
    request = NTPPacket(transmit_timestamp=NTPTimestamp(5))
    reply = NTPPacket(mode=NTPMode.SERVER, stratum=16, origin_timestamp=NTPTimestamp(5))
    with pytest.raises(NTPResponseError, match="stratum 16"):
        check_response(request, reply)
    check_response(request, replace(reply, stratum=15))
