from __future__ import annotations

import asyncio
import logging

from pos_offline.bootstrap.logging import log_operational_error
from pos_offline.core.errors import InfraError, TransportError
from pos_offline.domain.models import COUNTERS_COLLECTION, as_int
from pos_offline.domain.ports import ConnectivityPort, KeyValueStorePort, RemoteDocumentStorePort

logger = logging.getLogger(__name__)

COUNTER_KEY = "lastInvoiceNumber"
COUNTER_DOCUMENT = "invoiceCounter"


class InvoiceCounter:
    """Invoice numbers come from the local copy; the remote copy only reseeds fresh installs."""

    def __init__(
        self,
        store: KeyValueStorePort,
        remote: RemoteDocumentStorePort,
        connectivity: ConnectivityPort,
        *,
        key: str = COUNTER_KEY,
    ) -> None:
        self._store = store
        self._remote = remote
        self._connectivity = connectivity
        self._key = key
        self._background: set[asyncio.Task[None]] = set()

    def current(self) -> int:
        return as_int(self._store.get(self._key))

    def next_number(self) -> int:
        number = self.current() + 1
        self._store.set(self._key, number)
        if self._connectivity.is_online():
            self._mirror_remote(number)
        return number

    async def reseed_from_remote(self) -> int:
        if self._store.get(self._key) is not None or not self._connectivity.is_online():
            return self.current()
        try:
            document = await self._remote.get_document(COUNTERS_COLLECTION, COUNTER_DOCUMENT)
        except (TransportError, OSError) as exc:
            logger.warning("Invoice counter not reseeded: %s", exc)
            return self.current()
        value = as_int(document.get("lastInvoiceNumber")) if document else 0
        self._store.set(self._key, value)
        logger.info("Invoice counter reseeded from remote at %s", value)
        return value

    async def drain(self) -> None:
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _mirror_remote(self, number: int) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, invoice counter %s not mirrored", number)
            return
        task = loop.create_task(self._push(number))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _push(self, number: int) -> None:
        try:
            await self._remote.set_document(
                COUNTERS_COLLECTION, COUNTER_DOCUMENT, {"lastInvoiceNumber": number}, merge=True
            )
        except (InfraError, OSError) as exc:
            log_operational_error(
                logger,
                "Invoice counter mirror failed",
                exc=exc,
                extra={"last_invoice_number": number},
            )
