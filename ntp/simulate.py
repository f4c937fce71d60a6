from datetime import datetime, timezone

from asimpy import Environment, Queue
from ntp_server import NTPServer
from simulated_client import SimulatedNTPClient


STEADY_BASE_TIME = datetime(2024, 6, 15, 14, 30, 45, tzinfo=timezone.utc)
# 16 seconds before the first NTP era ends at 2036-02-07T06:28:16Z
ROLLOVER_BASE_TIME = datetime(2036, 2, 7, 6, 28, 0, tzinfo=timezone.utc)


# mccole: simulate
def run_ntp_simulation(base_time: datetime = STEADY_BASE_TIME, until: float = 25):
    """Simulate clients estimating their clock offsets against one server."""
    env = Environment()

    server_queue = Queue(env)

    # Stratum 1 server with a perfect clock
    server = NTPServer(
        env, "time.example.com", stratum=1, request_queue=server_queue, base_time=base_time
    )

    client1 = SimulatedNTPClient(
        env,
        "client1.local",
        server_queue,
        base_time=base_time,
        sync_interval=5.0,
        initial_offset=2.5,  # 2.5 seconds fast
    )

    client2 = SimulatedNTPClient(
        env,
        "client2.local",
        server_queue,
        base_time=base_time,
        sync_interval=5.0,
        initial_offset=-1.8,  # 1.8 seconds slow
    )

    client3 = SimulatedNTPClient(
        env,
        "client3.local",
        server_queue,
        base_time=base_time,
        sync_interval=7.0,
        initial_offset=0.5,  # 0.5 seconds fast
        network_delay=0.3,  # Slow uplink: the estimate is off by half the asymmetry
    )

    env.run(until=until)

    print_statistics(server, [client1, client2, client3])
    return server, [client1, client2, client3]


# mccole: /simulate


def run_era_rollover_simulation(until: float = 40):
    """Run exchanges straddling the 2036 NTP era rollover."""
    print(f"Starting at {ROLLOVER_BASE_TIME.isoformat()}, era 0 ends 16 s later")
    return run_ntp_simulation(base_time=ROLLOVER_BASE_TIME, until=until)


def print_statistics(server: NTPServer, clients: list[SimulatedNTPClient]) -> None:
    print("\n=== NTP Offset Estimation Statistics ===")
    print(f"Server requests served: {server.requests_served}")

    for client in clients:
        print(f"\n{client.name}:")
        print(f"  Samples taken: {client.syncs_performed}")
        print(f"  True clock offset: {client.clock_offset:+.6f}s")
        if client.offset_history:
            latest = client.offset_history[-1].total_seconds()
            average_delay = sum(d.total_seconds() for d in client.delay_history) / len(
                client.delay_history
            )
            print(f"  Latest offset estimate: {latest:+.6f}s")
            print(f"  Average round-trip delay: {average_delay:.6f}s")
            print(f"  Latest synchronized time: {client.time_history[-1].isoformat()}")


if __name__ == "__main__":
    run_ntp_simulation()
    run_era_rollover_simulation()
