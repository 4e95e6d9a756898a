from __future__ import annotations

import logging
from typing import Any, Callable

from pos_offline.application.local_mirror import LocalMirror
from pos_offline.application.reconciler import Reconciler
from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.domain.invoices import format_invoice_number
from pos_offline.domain.ports import RemoteDocumentStorePort

logger = logging.getLogger(__name__)

FeedListener = Callable[[list[dict[str, Any]]], None]


class InvoiceFeed:
    """Live list of a shop's sales: server records plus the ones still queued locally."""

    def __init__(
        self,
        remote: RemoteDocumentStorePort,
        reconciler: Reconciler,
        mirror: LocalMirror,
        events: EventChannel,
        shop: str,
    ) -> None:
        self._remote = remote
        self._reconciler = reconciler
        self._mirror = mirror
        self._events = events
        self._shop = shop
        self._remote_records: list[dict[str, Any]] = []
        self._records: list[dict[str, Any]] = []
        self._listeners: list[FeedListener] = []
        self._error: Exception | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._disconnect_mirror: Callable[[], None] | None = None
        self._recomputing = False

    @property
    def records(self) -> list[dict[str, Any]]:
        return list(self._records)

    @property
    def error(self) -> Exception | None:
        return self._error

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._disconnect_mirror = self._events.connect(SyncEvent.MIRROR_CHANGED, self._on_mirror_changed)
        self._unsubscribe = self._remote.subscribe(
            self._reconciler.collection,
            [("shop", "==", self._shop)],
            self._on_remote_change,
            self._on_remote_error,
        )
        self._recompute()

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._disconnect_mirror is not None:
            self._disconnect_mirror()
            self._disconnect_mirror = None

    def connect(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def disconnect() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return disconnect

    def filter(self, search_term: str) -> list[dict[str, Any]]:
        term = search_term.strip()
        if not term:
            return self.records
        return [record for record in self._records if term in format_invoice_number(record.get("invoiceNumber"))]

    def _on_remote_change(self, records: list[dict[str, Any]]) -> None:
        self._error = None
        self._remote_records = list(records)
        self._recomputing = True
        try:
            self._reconciler.sweep(self._remote_records)
        finally:
            self._recomputing = False
        self._recompute()

    def _on_remote_error(self, exc: Exception) -> None:
        logger.warning("Sales subscription for %s failed, showing local records: %s", self._shop, exc)
        self._error = exc
        self._remote_records = []
        self._recompute()

    def _on_mirror_changed(self, _payload: object) -> None:
        if not self._recomputing:
            self._recompute()

    def _recompute(self) -> None:
        self._recomputing = True
        try:
            self._records = self._reconciler.merge(self._remote_records, self._mirror.list_for(self._shop))
        finally:
            self._recomputing = False
        for listener in list(self._listeners):
            listener(self.records)
