from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Callable, Protocol

from pos_offline.domain.models import BatchWrite

Filters = Sequence[tuple[str, str, Any]]
ChangeCallback = Callable[[list[dict[str, Any]]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class KeyValueStorePort(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class RemoteDocumentStorePort(Protocol):
    """Remote document database, one collection of JSON documents per name.

    Documents are returned as dicts carrying their ``id``. Filters are
    ``(field, "==", value)`` triples.
    """

    async def add_document(self, collection: str, data: dict[str, Any]) -> str: ...

    async def update_document(self, collection: str, doc_id: str, data: dict[str, Any]) -> None: ...

    async def delete_document(self, collection: str, doc_id: str) -> None: ...

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def set_document(self, collection: str, doc_id: str, data: dict[str, Any], merge: bool = False) -> None: ...

    async def query_documents(self, collection: str, filters: Filters = ()) -> list[dict[str, Any]]: ...

    def subscribe(
        self,
        collection: str,
        filters: Filters,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe: ...

    async def commit_batch(self, writes: Sequence[BatchWrite]) -> None: ...


class ConnectivityPort(Protocol):
    """``is_online`` returns the last known state without blocking; ``refresh`` re-probes."""

    def is_online(self) -> bool: ...

    async def refresh(self) -> bool: ...
