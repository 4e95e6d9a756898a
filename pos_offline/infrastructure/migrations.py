from __future__ import annotations

import argparse
import hashlib
import logging
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from pos_offline.bootstrap.logging import configure_logging
from pos_offline.bootstrap.settings import resolve_db_path, resolve_log_dir
from pos_offline.core.errors import PersistenceError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "sql"
_SCRIPT_NAME = re.compile(r"^(?P<version>\d+)_(?P<name>\w+)\.up\.sql$")

_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    checksum TEXT NOT NULL,
    applied_at TEXT NOT NULL
)
"""


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    up_path: Path
    down_path: Path

    def up_script(self) -> str:
        return self.up_path.read_text(encoding="utf-8")

    def down_script(self) -> str:
        return self.down_path.read_text(encoding="utf-8")

    def checksum(self) -> str:
        return hashlib.sha256(self.up_script().encode("utf-8")).hexdigest()


def discover(migrations_dir: Path) -> list[Migration]:
    """Pairs every ``NNN_name.up.sql`` with its ``.down.sql``, ordered by version."""
    found: list[Migration] = []
    for up_path in migrations_dir.glob("*.up.sql"):
        match = _SCRIPT_NAME.match(up_path.name)
        if match is None:
            raise PersistenceError(f"Unexpected migration file name: {up_path.name}")
        down_path = up_path.with_name(up_path.name.replace(".up.sql", ".down.sql"))
        if not down_path.exists():
            raise FileNotFoundError(f"Missing down migration for {up_path.name}: {down_path}")
        found.append(Migration(int(match["version"]), match["name"], up_path, down_path))
    return sorted(found, key=lambda migration: migration.version)


class MigrationRunner:
    """Applies and rolls back the local schema, one transaction per script.

    ``PRAGMA user_version`` mirrors the newest applied version so tools that
    do not know about ``schema_migrations`` can still tell the schema apart.
    """

    def __init__(self, connection: sqlite3.Connection, migrations_dir: Path | None = None) -> None:
        self.connection = connection
        self.migrations = discover(migrations_dir or MIGRATIONS_DIR)
        self.connection.execute(_HISTORY_DDL)
        self.connection.commit()

    def applied(self) -> dict[int, str]:
        rows = self.connection.execute("SELECT version, checksum FROM schema_migrations").fetchall()
        return {int(version): str(checksum) for version, checksum in rows}

    def apply_all(self) -> list[int]:
        applied = self.applied()
        self._check_drift(applied)
        newly_applied: list[int] = []
        for migration in self.migrations:
            if migration.version not in applied:
                self._apply(migration)
                newly_applied.append(migration.version)
        return newly_applied

    def rollback(self, steps: int = 1) -> list[int]:
        by_version = {migration.version: migration for migration in self.migrations}
        newest_first = sorted(self.applied(), reverse=True)[:steps]
        for version in newest_first:
            self._revert(by_version[version])
        return newest_first

    def status(self) -> list[dict[str, object]]:
        applied = self.applied()
        return [
            {"version": migration.version, "name": migration.name, "applied": migration.version in applied}
            for migration in self.migrations
        ]

    def _check_drift(self, applied: dict[int, str]) -> None:
        for migration in self.migrations:
            recorded = applied.get(migration.version)
            if recorded is not None and recorded != migration.checksum():
                raise PersistenceError(
                    f"Migration {migration.version:04d} {migration.name} changed after it was applied"
                )

    def _apply(self, migration: Migration) -> None:
        script = migration.up_script()
        applied_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        with self.connection:
            if script.strip():
                self.connection.executescript(script)
            self.connection.execute(
                "INSERT INTO schema_migrations (version, name, checksum, applied_at) VALUES (?, ?, ?, ?)",
                (migration.version, migration.name, migration.checksum(), applied_at),
            )
            self._sync_user_version()
        logger.info("Applied migration %04d %s", migration.version, migration.name)

    def _revert(self, migration: Migration) -> None:
        script = migration.down_script()
        with self.connection:
            if script.strip():
                self.connection.executescript(script)
            self.connection.execute("DELETE FROM schema_migrations WHERE version = ?", (migration.version,))
            self._sync_user_version()
        logger.info("Rolled back migration %04d %s", migration.version, migration.name)

    def _sync_user_version(self) -> None:
        (newest,) = self.connection.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()
        self.connection.execute(f"PRAGMA user_version = {int(newest)}")


def run_migrations(connection: sqlite3.Connection) -> list[int]:
    return MigrationRunner(connection).apply_all()


def build_cli() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos-offline-migrate", description="Manage the local SQLite schema")
    parser.add_argument("command", choices=["up", "down", "status"])
    parser.add_argument("--db", default=None, help="SQLite file (defaults to POS_OFFLINE_DB_PATH)")
    parser.add_argument("--steps", type=int, default=1, help="Migrations to roll back with 'down'")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_cli().parse_args(argv)
    configure_logging(resolve_log_dir())

    db_path = Path(args.db) if args.db else resolve_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(db_path)
    try:
        runner = MigrationRunner(connection)
        if args.command == "up":
            print(f"applied: {runner.apply_all()}")
        elif args.command == "down":
            print(f"rolled back: {runner.rollback(args.steps)}")
        else:
            for row in runner.status():
                print(f"{'[x]' if row['applied'] else '[ ]'} {row['version']:04d} {row['name']}")
    finally:
        connection.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
