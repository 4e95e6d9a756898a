from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from pos_offline.application.close_day_service import CloseDayService
from pos_offline.application.connectivity_monitor import ConnectivityMonitor
from pos_offline.application.invoice_counter import InvoiceCounter
from pos_offline.application.invoice_feed import InvoiceFeed
from pos_offline.application.invoice_service import InvoiceService
from pos_offline.application.keyed_serializer import PerKeySerializer
from pos_offline.application.local_mirror import LocalMirror
from pos_offline.application.offline_writer import OfflineWriter
from pos_offline.application.operation_executor import OperationExecutor
from pos_offline.application.product_cache import ProductCache
from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.application.reconciler import Reconciler
from pos_offline.application.stock_engine import StockReconciliationEngine
from pos_offline.application.sync_coordinator import SyncCoordinator
from pos_offline.bootstrap.settings import SyncSettings
from pos_offline.core.events import EventChannel, SyncEvent
from pos_offline.domain.ports import ConnectivityPort, KeyValueStorePort, RemoteDocumentStorePort
from pos_offline.infrastructure.connectivity import SocketConnectivityProbe
from pos_offline.infrastructure.db import get_connection
from pos_offline.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from pos_offline.infrastructure.local_config import SyncConfig, SyncConfigStore
from pos_offline.infrastructure.memory_stores import InMemoryRemoteStore
from pos_offline.infrastructure.migrations import run_migrations
from pos_offline.infrastructure.sheets_client import SheetsClient
from pos_offline.infrastructure.sheets_document_store import SheetsDocumentStore

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    settings: SyncSettings
    config: SyncConfig
    events: EventChannel
    store: KeyValueStorePort
    connectivity: ConnectivityPort
    remote: RemoteDocumentStorePort
    queue: DurableQueueStore
    mirror: LocalMirror
    reconciler: Reconciler
    executor: OperationExecutor
    coordinator: SyncCoordinator
    monitor: ConnectivityMonitor
    writer: OfflineWriter
    product_cache: ProductCache
    stock_engine: StockReconciliationEngine
    invoice_counter: InvoiceCounter
    invoice_service: InvoiceService
    close_day_service: CloseDayService

    def invoice_feed(self, shop: str | None = None) -> InvoiceFeed:
        return InvoiceFeed(self.remote, self.reconciler, self.mirror, self.events, shop or self.config.shop)


ConnectionFactory = Callable[[], sqlite3.Connection]


def build_remote(config: SyncConfig, settings: SyncSettings) -> RemoteDocumentStorePort:
    if not config.remote_configured:
        logger.warning("Remote store not configured, using an in-memory store")
        return InMemoryRemoteStore()
    client = SheetsClient(Path(config.credentials_path), config.spreadsheet_id)
    return SheetsDocumentStore(client, poll_seconds=settings.subscription_poll_seconds)


def build_container(
    connection_factory: ConnectionFactory = get_connection,
    *,
    settings: SyncSettings | None = None,
    config_store: SyncConfigStore | None = None,
    remote: RemoteDocumentStorePort | None = None,
    connectivity: ConnectivityPort | None = None,
) -> AppContainer:
    settings = settings or SyncSettings.from_env()
    config = (config_store or SyncConfigStore()).load()

    connection = connection_factory()
    run_migrations(connection)
    store = SQLiteKeyValueStore(connection)

    remote = remote or build_remote(config, settings)
    connectivity = connectivity or SocketConnectivityProbe(
        settings.connectivity_host,
        settings.connectivity_port,
        timeout_seconds=settings.connectivity_timeout_seconds,
    )
    events = EventChannel()

    queue = DurableQueueStore(store)
    mirror = LocalMirror(store, events=events)
    reconciler = Reconciler(mirror, events=events)
    executor = OperationExecutor(remote, timeout_seconds=settings.remote_timeout_seconds)
    coordinator = SyncCoordinator(
        queue,
        executor,
        connectivity,
        reconciler=reconciler,
        events=events,
        max_retries=settings.max_retries,
    )
    monitor = ConnectivityMonitor(connectivity, coordinator, interval_seconds=settings.poll_interval_seconds)
    writer = OfflineWriter(remote, queue, connectivity, timeout_seconds=settings.remote_timeout_seconds)
    product_cache = ProductCache(store)
    events.connect(SyncEvent.ID_ASSIGNED, product_cache.adopt_remote_id)
    stock_engine = StockReconciliationEngine(
        remote,
        writer,
        queue,
        product_cache,
        serializer=PerKeySerializer(),
        default_shop=config.shop or None,
        timeout_seconds=settings.remote_timeout_seconds,
    )
    invoice_counter = InvoiceCounter(store, remote, connectivity)
    invoice_service = InvoiceService(
        writer,
        invoice_counter,
        mirror,
        stock_engine,
        remote,
        timeout_seconds=settings.remote_timeout_seconds,
    )
    close_day_service = CloseDayService(
        remote,
        writer,
        queue,
        mirror,
        reconciler,
        timeout_seconds=settings.remote_timeout_seconds,
    )

    return AppContainer(
        settings=settings,
        config=config,
        events=events,
        store=store,
        connectivity=connectivity,
        remote=remote,
        queue=queue,
        mirror=mirror,
        reconciler=reconciler,
        executor=executor,
        coordinator=coordinator,
        monitor=monitor,
        writer=writer,
        product_cache=product_cache,
        stock_engine=stock_engine,
        invoice_counter=invoice_counter,
        invoice_service=invoice_service,
        close_day_service=close_day_service,
    )
