from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from pos_offline.core.errors import AppError, NotFoundError, TransportError, ValidationError
from pos_offline.domain.models import OperationAction, QueueOperation
from pos_offline.domain.ports import RemoteDocumentStorePort

logger = logging.getLogger(__name__)

T = TypeVar("T")

_KNOWN_ACTIONS = {action.value for action in OperationAction}


async def call_remote(awaitable: Awaitable[T], *, description: str, timeout_seconds: float | None = None) -> T:
    """Await a remote call, turning timeouts and socket failures into ``TransportError``."""
    try:
        if timeout_seconds is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except AppError:
        raise
    except (asyncio.TimeoutError, TimeoutError, ConnectionError, OSError) as exc:
        raise TransportError(f"{description} failed: {exc or type(exc).__name__}") from exc


class OperationExecutor:
    """Applies one queued operation against the remote store.

    Library and network failures leave this class only as ``TransportError``
    (retryable) or as the domain errors the remote adapter already raised.
    """

    def __init__(self, remote: RemoteDocumentStorePort, *, timeout_seconds: float | None = None) -> None:
        self._remote = remote
        self._timeout_seconds = timeout_seconds

    async def execute(self, operation: QueueOperation) -> str | None:
        self._validate(operation)
        return await call_remote(
            self._dispatch(operation),
            description=f"{operation.action} on {operation.collection}",
            timeout_seconds=self._timeout_seconds,
        )

    def _validate(self, operation: QueueOperation) -> None:
        if operation.action not in _KNOWN_ACTIONS:
            raise ValidationError(f"Unknown action {operation.action!r} in operation {operation.id}")
        missing = operation.missing_fields()
        if missing:
            raise ValidationError(f"Operation {operation.id} is missing {', '.join(missing)}")

    async def _dispatch(self, operation: QueueOperation) -> str | None:
        if operation.action == OperationAction.ADD:
            return await self._remote.add_document(operation.collection, dict(operation.payload or {}))
        if operation.action == OperationAction.UPDATE:
            await self._remote.update_document(
                operation.collection, str(operation.target_id), dict(operation.payload or {})
            )
            return None
        try:
            await self._remote.delete_document(operation.collection, str(operation.target_id))
        except NotFoundError:
            logger.info("%s/%s already deleted remotely", operation.collection, operation.target_id)
        return None
