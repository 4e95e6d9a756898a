from __future__ import annotations

import sqlite3

import pytest

from pos_offline.application.queue_store import DurableQueueStore
from pos_offline.core.errors import PersistenceError
from pos_offline.infrastructure.kv_store_sqlite import SQLiteKeyValueStore
from pos_offline.infrastructure.sqlite_uow import transaction


def test_values_round_trip_as_json(connection) -> None:
    store = SQLiteKeyValueStore(connection)

    store.set("offlineQueue", [{"id": "offline-1", "data": {"total": 9.5}}])
    store.set("lastInvoiceNumber", 7)

    assert store.get("offlineQueue") == [{"id": "offline-1", "data": {"total": 9.5}}]
    assert store.get("lastInvoiceNumber") == 7
    assert store.get("missing") is None
    assert store.keys() == ["lastInvoiceNumber", "offlineQueue"]


def test_set_overwrites_and_delete_removes(connection) -> None:
    store = SQLiteKeyValueStore(connection)
    store.set("productCache", {"a": 1})
    store.set("productCache", {"b": 2})

    assert store.get("productCache") == {"b": 2}
    store.delete("productCache")
    assert store.get("productCache") is None


def test_queue_survives_reopening_the_database(tmp_path) -> None:
    from pos_offline.infrastructure.db import get_connection
    from pos_offline.infrastructure.migrations import run_migrations

    db_path = tmp_path / "pos.sqlite3"
    first = get_connection(db_path)
    run_migrations(first)
    op_id = DurableQueueStore(SQLiteKeyValueStore(first)).enqueue("dailySales", "add", payload={"invoiceNumber": 1})
    first.close()

    second = get_connection(db_path)
    reloaded = DurableQueueStore(SQLiteKeyValueStore(second))

    assert [op.id for op in reloaded.pending()] == [op_id]
    second.close()


def test_non_json_values_are_rejected(connection) -> None:
    store = SQLiteKeyValueStore(connection)

    with pytest.raises(PersistenceError):
        store.set("bad", {"when": object()})


def test_corrupted_rows_read_as_missing(connection) -> None:
    connection.execute("INSERT INTO local_store (key, value, updated_at) VALUES ('broken', '{', 'now')")
    connection.commit()

    assert SQLiteKeyValueStore(connection).get("broken") is None


def test_missing_table_surfaces_as_persistence_error() -> None:
    connection = sqlite3.connect(":memory:")

    with pytest.raises(PersistenceError):
        SQLiteKeyValueStore(connection).get("offlineQueue")


def test_nested_transaction_rolls_back_only_inner_block(connection) -> None:
    store = SQLiteKeyValueStore(connection)

    with transaction(connection):
        store.set("outer", 1)
        with pytest.raises(RuntimeError):
            with transaction(connection):
                store.set("inner", 2)
                raise RuntimeError("abort inner")

    assert store.get("outer") == 1
    assert store.get("inner") is None
