from __future__ import annotations

import asyncio
import logging
import socket
from typing import Callable

logger = logging.getLogger(__name__)


class SocketConnectivityProbe:
    """Online when a TCP connection to a well-known host succeeds.

    ``is_online`` only reads the last probe result and never touches the
    network, so it is safe to call from coroutines. ``refresh`` runs the
    blocking connect on a worker thread. Until the first refresh the probe
    reports offline and writes are queued.
    """

    def __init__(
        self,
        host: str = "8.8.8.8",
        port: int = 53,
        *,
        timeout_seconds: float = 2.0,
        connect: Callable[..., socket.socket] = socket.create_connection,
    ) -> None:
        self._address = (host, port)
        self._timeout_seconds = timeout_seconds
        self._connect = connect
        self._online = False

    def is_online(self) -> bool:
        return self._online

    async def refresh(self) -> bool:
        self._online = await asyncio.to_thread(self._probe)
        return self._online

    def _probe(self) -> bool:
        try:
            connection = self._connect(self._address, timeout=self._timeout_seconds)
        except OSError as exc:
            logger.debug("Connectivity probe to %s:%s failed: %s", *self._address, exc)
            return False
        connection.close()
        return True


class ManualConnectivity:
    """Connectivity switched explicitly by the host application or by tests."""

    def __init__(self, online: bool = True) -> None:
        self.online = online

    def is_online(self) -> bool:
        return self.online

    async def refresh(self) -> bool:
        return self.online

    def set_online(self, online: bool) -> None:
        self.online = online
