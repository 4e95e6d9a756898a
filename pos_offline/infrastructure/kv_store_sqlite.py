from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any

from pos_offline.core.errors import PersistenceError
from pos_offline.domain.time_utils import Clock, to_iso, utc_now
from pos_offline.infrastructure.sqlite_uow import transaction

logger = logging.getLogger(__name__)


class SQLiteKeyValueStore:
    """JSON values by key in the ``local_store`` table."""

    def __init__(self, connection: sqlite3.Connection, *, clock: Clock = utc_now) -> None:
        self._connection = connection
        self._clock = clock

    def get(self, key: str) -> Any | None:
        try:
            row = self._connection.execute("SELECT value FROM local_store WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not read {key!r} from local store") from exc
        if row is None:
            return None
        try:
            return json.loads(row[0])
        except json.JSONDecodeError:
            logger.warning("Corrupted value under %s ignored", key)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Value for {key!r} is not JSON serializable") from exc
        try:
            with transaction(self._connection):
                self._connection.execute(
                    """
                    INSERT INTO local_store (key, value, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                    """,
                    (key, encoded, to_iso(self._clock())),
                )
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not write {key!r} to local store") from exc

    def delete(self, key: str) -> None:
        try:
            with transaction(self._connection):
                self._connection.execute("DELETE FROM local_store WHERE key = ?", (key,))
        except sqlite3.Error as exc:
            raise PersistenceError(f"Could not delete {key!r} from local store") from exc

    def keys(self) -> list[str]:
        return [row[0] for row in self._connection.execute("SELECT key FROM local_store ORDER BY key").fetchall()]
