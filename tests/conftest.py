from __future__ import annotations

import sqlite3
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from pos_offline.application.close_day_service import CloseDayService
from pos_offline.application.invoice_counter import InvoiceCounter
from pos_offline.application.invoice_service import InvoiceService
from pos_offline.application.local_mirror import LocalMirror
from pos_offline.application.offline_writer import OfflineWriter
from pos_offline.application.operation_executor import OperationExecutor
from pos_offline.application.product_cache import ProductCache
from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.application.reconciler import Reconciler
from pos_offline.application.stock_engine import StockReconciliationEngine
from pos_offline.application.sync_coordinator import SyncCoordinator
from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.core.metrics import MetricsRegistry
from pos_offline.infrastructure.connectivity import ManualConnectivity
from pos_offline.infrastructure.memory_stores import InMemoryKeyValueStore, InMemoryRemoteStore
from pos_offline.infrastructure.migrations import run_migrations

FIXED_NOW = datetime(2025, 3, 14, 12, 30, tzinfo=timezone.utc)


class Harness:
    """Every engine component wired over in-memory stores, sharing one connectivity switch."""

    def __init__(self, store: InMemoryKeyValueStore | None = None, remote: InMemoryRemoteStore | None = None) -> None:
        self.store = store or InMemoryKeyValueStore()
        self.remote = remote or InMemoryRemoteStore()
        self.connectivity = ManualConnectivity(True)
        self.events = EventChannel()
        self.metrics = MetricsRegistry()
        self.clock = lambda: FIXED_NOW
        self.queue = DurableQueueStore(self.store, clock=self.clock)
        self.mirror = LocalMirror(self.store, events=self.events)
        self.reconciler = Reconciler(self.mirror, events=self.events)
        self.executor = OperationExecutor(self.remote)
        self.coordinator = SyncCoordinator(
            self.queue,
            self.executor,
            self.connectivity,
            reconciler=self.reconciler,
            events=self.events,
            clock=self.clock,
            metrics=self.metrics,
        )
        self.writer = OfflineWriter(self.remote, self.queue, self.connectivity)
        self.cache = ProductCache(self.store)
        self.events.connect(SyncEvent.ID_ASSIGNED, self.cache.adopt_remote_id)
        self.stock = StockReconciliationEngine(
            self.remote, self.writer, self.queue, self.cache, default_shop="Downtown", metrics=self.metrics
        )
        self.counter = InvoiceCounter(self.store, self.remote, self.connectivity)
        self.invoices = InvoiceService(
            self.writer, self.counter, self.mirror, self.stock, self.remote, clock=self.clock
        )
        self.close_day = CloseDayService(
            self.remote, self.writer, self.queue, self.mirror, self.reconciler, clock=self.clock
        )

    def go_offline(self) -> None:
        self.connectivity.set_online(False)
        self.remote.go_offline()

    def go_online(self) -> None:
        self.connectivity.set_online(True)
        self.remote.go_online()


@pytest.fixture
def connection() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def remote() -> InMemoryRemoteStore:
    return InMemoryRemoteStore()


@pytest.fixture
def harness() -> Harness:
    return Harness()
