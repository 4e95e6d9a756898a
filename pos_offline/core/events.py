from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class SyncEvent(str, Enum):
    QUEUE_DRAINED = "queue_drained"
    RECORD_RECONCILED = "record_reconciled"
    SYNC_COMPLETED = "sync_completed"
    MIRROR_CHANGED = "mirror_changed"
    ID_ASSIGNED = "id_assigned"


class EventChannel:
    """Explicit observer registry the presentation layer subscribes to.

    Listeners run synchronously in emission order. A failing listener is
    logged and does not stop delivery to the remaining ones.
    """

    def __init__(self) -> None:
        self._listeners: dict[SyncEvent, list[Listener]] = {}

    def connect(self, event: SyncEvent, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)

        def disconnect() -> None:
            self.disconnect(event, listener)

        return disconnect

    def disconnect(self, event: SyncEvent, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: SyncEvent, payload: Any = None) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception:  # noqa: BLE001
                logger.exception("Listener for %s failed", event.value)

    def listener_count(self, event: SyncEvent) -> int:
        return len(self._listeners.get(event, []))
