from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from pos_offline.application.sync_coordinator import SyncCoordinator
from pos_offline.domain.models import SyncSummary
from pos_offline.domain.ports import ConnectivityPort

logger = logging.getLogger(__name__)


class ConnectivityMonitor:
    """Turns connectivity transitions into sync passes.

    The first observation counts as a transition when it is online, so a
    session that starts online drains what the previous one left queued.
    """

    def __init__(
        self,
        probe: ConnectivityPort,
        coordinator: SyncCoordinator,
        *,
        interval_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._probe = probe
        self._coordinator = coordinator
        self._interval_seconds = interval_seconds
        self._sleep = sleep
        self._last_online: bool | None = None

    @property
    def last_online(self) -> bool | None:
        return self._last_online

    async def check(self) -> SyncSummary | None:
        online = await self._probe.refresh()
        return await self.notify(online)

    async def notify(self, online: bool) -> SyncSummary | None:
        previous = self._last_online
        self._last_online = online
        if online and previous is not True:
            logger.info("Connectivity restored, starting sync")
            return await self._coordinator.sync()
        if not online and previous is not False:
            logger.info("Connectivity lost, writes will be queued")
        return None

    async def run(self, *, stop: asyncio.Event | None = None, max_cycles: int | None = None) -> None:
        cycles = 0
        while stop is None or not stop.is_set():
            await self.check()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                return
            await self._sleep(self._interval_seconds)
