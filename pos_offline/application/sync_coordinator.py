from __future__ import annotations

import logging

from pos_offline.application.operation_executor import OperationExecutor
from pos_offline.application.queue_store import MAX_RETRIES, DurableQueueStore
from pos_offline.application.reconciler import Reconciler
from pos_offline.bootstrap.logging import log_operational_error
from pos_offline.core.errors import is_retryable
from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.core.metrics import MetricsRegistry, metrics_registry, timed
from pos_offline.core.observability import OperationContext, log_event
from pos_offline.domain.models import IdAssignment, OperationAction, OperationFailure, QueueOperation, SyncSummary
from pos_offline.domain.ports import ConnectivityPort
from pos_offline.domain.time_utils import Clock, to_iso, utc_now

logger = logging.getLogger(__name__)

SKIPPED_IN_PROGRESS = "in_progress"
SKIPPED_OFFLINE = "offline"


class SyncCoordinator:
    """Drains the durable queue against the remote store.

    Only one pass runs at a time: the flag is checked and set before the
    first ``await``, so a concurrent call returns without touching anything.
    """

    def __init__(
        self,
        queue: DurableQueueStore,
        executor: OperationExecutor,
        connectivity: ConnectivityPort,
        *,
        reconciler: Reconciler | None = None,
        events: EventChannel | None = None,
        max_retries: int = MAX_RETRIES,
        clock: Clock = utc_now,
        metrics: MetricsRegistry = metrics_registry,
    ) -> None:
        self._queue = queue
        self._executor = executor
        self._connectivity = connectivity
        self._reconciler = reconciler
        self._events = events
        self._max_retries = max_retries
        self._clock = clock
        self._metrics = metrics
        self._in_progress = False

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    async def sync(self) -> SyncSummary:
        if self._in_progress:
            logger.info("Sync already running, skipping")
            return SyncSummary(skipped_reason=SKIPPED_IN_PROGRESS)
        self._in_progress = True
        try:
            if not await self._connectivity.refresh():
                logger.info("Offline, sync skipped")
                return SyncSummary(skipped_reason=SKIPPED_OFFLINE)
            with OperationContext("sync"):
                summary = await self._run_pass()
        except Exception as exc:  # noqa: BLE001
            log_operational_error(logger, "Sync pass aborted", exc=exc)
            summary = SyncSummary(
                failed=1,
                errors=(OperationFailure("", type(exc).__name__, str(exc), is_retryable(exc)),),
            )
        finally:
            self._in_progress = False

        self._emit(SyncEvent.SYNC_COMPLETED, summary)
        if not self._queue.pending():
            self._emit(SyncEvent.QUEUE_DRAINED, summary)
        return summary

    @timed("sync.pass")
    async def _run_pass(self) -> SyncSummary:
        pending = self._queue.pending()
        self._metrics.increment("sync_runs")
        log_event(logger, "sync_started", {"pending": len(pending)})

        succeeded = 0
        failures: list[OperationFailure] = []
        dropped: list[str] = []
        deferred: list[str] = []
        # Documents with a failed retryable operation this pass; their later
        # operations wait for the next pass so creation order is kept.
        blocked: set[tuple[str, str]] = set()
        for snapshot in pending:
            operation = self._queue.get(snapshot.id)
            if operation is None or operation.synced:
                continue
            entity = operation.entity_key()
            if entity in blocked:
                deferred.append(operation.id)
                continue
            try:
                remote_id = await self._executor.execute(operation)
            except Exception as exc:  # noqa: BLE001
                failure = self._register_failure(operation, exc)
                failures.append(failure)
                if failure.retryable:
                    blocked.add(entity)
                else:
                    dropped.append(operation.id)
                continue

            synced = self._queue.mark_synced(operation.id, to_iso(self._clock()))
            succeeded += 1
            self._metrics.increment("operations_synced")
            if operation.action == OperationAction.ADD and remote_id:
                self._assign_remote_id(operation, str(remote_id))
            if synced is not None and self._reconciler is not None:
                self._reconciler.reconcile_operation(synced)
        if deferred:
            logger.info("%s operations deferred behind failed writes to the same document", len(deferred))

        if self._reconciler is not None:
            self._reconciler.cleanup_synced(self._queue.all())

        purge = self._queue.purge_completed(self._max_retries)
        for operation in purge.abandoned:
            self._metrics.increment("operations_abandoned")
            log_operational_error(
                logger,
                "Queued operation abandoned after retry ceiling",
                extra={"operation": operation.to_record()},
            )

        summary = SyncSummary(
            succeeded=succeeded,
            failed=len(failures),
            errors=tuple(failures),
            abandoned=tuple(operation.id for operation in purge.abandoned),
            dropped=tuple(dropped),
            deferred=tuple(deferred),
        )
        log_event(
            logger,
            "sync_finished",
            {
                "succeeded": summary.succeeded,
                "failed": summary.failed,
                "abandoned": len(summary.abandoned),
                "dropped": len(summary.dropped),
                "deferred": len(summary.deferred),
            },
        )
        return summary

    def _assign_remote_id(self, operation: QueueOperation, remote_id: str) -> None:
        if remote_id == operation.id:
            return
        moved = self._queue.retarget(operation.collection, operation.id, remote_id)
        if moved:
            logger.info("%s queued writes moved from %s to %s", moved, operation.id, remote_id)
        self._emit(SyncEvent.ID_ASSIGNED, IdAssignment(operation.collection, operation.id, remote_id))

    def _register_failure(self, operation: QueueOperation, exc: Exception) -> OperationFailure:
        retryable = is_retryable(exc)
        if retryable:
            retries = self._queue.record_failure(operation.id)
            logger.warning(
                "Operation %s failed (attempt %s/%s): %s", operation.id, retries, self._max_retries, exc
            )
        else:
            self._queue.dequeue(operation.id)
            logger.warning("Operation %s dropped: %s", operation.id, exc)
        return OperationFailure(operation.id, type(exc).__name__, str(exc), retryable)

    def _emit(self, event: SyncEvent, payload: object) -> None:
        if self._events is not None:
            self._events.emit(event, payload)
