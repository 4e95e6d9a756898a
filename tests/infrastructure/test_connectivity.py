from __future__ import annotations

import asyncio

from pos_offline.infrastructure.connectivity import ManualConnectivity, SocketConnectivityProbe


class _SocketFake:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


def test_refresh_reports_online_when_connection_opens() -> None:
    opened: list[_SocketFake] = []

    def connect(address, timeout):  # noqa: ANN001
        sock = _SocketFake()
        opened.append(sock)
        return sock

    probe = SocketConnectivityProbe("10.0.0.1", 443, connect=connect)

    assert asyncio.run(probe.refresh()) is True
    assert probe.is_online() is True
    assert opened[0].closed


def test_refresh_reports_offline_on_socket_errors() -> None:
    def connect(address, timeout):  # noqa: ANN001
        raise OSError("network unreachable")

    probe = SocketConnectivityProbe(connect=connect)

    assert asyncio.run(probe.refresh()) is False
    assert probe.is_online() is False


def test_is_online_reads_last_result_without_connecting() -> None:
    attempts: list[tuple] = []
    reachable = [True]

    def connect(address, timeout):  # noqa: ANN001
        attempts.append(address)
        if not reachable[0]:
            raise OSError("down")
        return _SocketFake()

    probe = SocketConnectivityProbe(connect=connect)
    assert probe.is_online() is False
    assert attempts == []

    asyncio.run(probe.refresh())
    reachable[0] = False
    for _ in range(5):
        assert probe.is_online() is True

    assert len(attempts) == 1
    assert asyncio.run(probe.refresh()) is False
    assert probe.is_online() is False


def test_manual_connectivity_switch() -> None:
    connectivity = ManualConnectivity(False)
    connectivity.set_online(True)

    assert connectivity.is_online()
    assert asyncio.run(connectivity.refresh()) is True
