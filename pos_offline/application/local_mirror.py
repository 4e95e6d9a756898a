from __future__ import annotations

import logging
from collections.abc import Iterable

from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.domain.models import MirrorRecord
from pos_offline.domain.ports import KeyValueStorePort

logger = logging.getLogger(__name__)

MIRROR_KEY = "offlineInvoices"


class LocalMirror:
    """Locally created records shown to the user until the server confirms them."""

    def __init__(self, store: KeyValueStorePort, *, key: str = MIRROR_KEY, events: EventChannel | None = None) -> None:
        self._store = store
        self._key = key
        self._events = events
        self._records = self._load()

    def _load(self) -> list[MirrorRecord]:
        raw = self._store.get(self._key)
        if not isinstance(raw, list):
            return []
        records: list[MirrorRecord] = []
        for item in raw:
            if isinstance(item, dict) and (item.get("id") or item.get("queueId")):
                records.append(MirrorRecord.from_record(item))
            else:
                logger.warning("Discarding unreadable mirror entry: %r", item)
        return records

    def _persist(self) -> None:
        self._store.set(self._key, [record.to_record() for record in self._records])

    def _changed(self) -> None:
        self._persist()
        if self._events is not None:
            self._events.emit(SyncEvent.MIRROR_CHANGED, len(self._records))

    def put(self, record: MirrorRecord) -> None:
        self._records = [existing for existing in self._records if existing.local_id != record.local_id]
        self._records.append(record)
        self._changed()

    def get(self, local_id: str) -> MirrorRecord | None:
        return next((record for record in self._records if record.local_id == local_id), None)

    def remove(self, local_id: str) -> bool:
        return bool(self.remove_many([local_id]))

    def remove_many(self, local_ids: Iterable[str]) -> list[str]:
        targets = set(local_ids)
        removed = [record.local_id for record in self._records if record.local_id in targets]
        if not removed:
            return []
        self._records = [record for record in self._records if record.local_id not in targets]
        self._changed()
        return removed

    def list_for(self, shop: str) -> list[MirrorRecord]:
        return [record for record in self._records if record.shop == shop]

    def list_all(self) -> list[MirrorRecord]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
