from __future__ import annotations

import argparse
import asyncio
import faulthandler
import json
import logging
import sqlite3
import sys
from pathlib import Path

from pos_offline.bootstrap.container import AppContainer, build_container
from pos_offline.bootstrap.exception_handler import install_exception_hook
from pos_offline.bootstrap.logging import configure_logging
from pos_offline.bootstrap.settings import resolve_log_dir
from pos_offline.core.errors import PersistenceError
from pos_offline.core.metrics import metrics_registry
from pos_offline.infrastructure.local_config import SyncConfigStore
from pos_offline.infrastructure.migrations import MIGRATIONS_DIR, MigrationRunner

logger = logging.getLogger(__name__)


def _run_selfcheck(log_dir: Path) -> int:
    errors = 0

    if not any(MIGRATIONS_DIR.glob("*.up.sql")):
        logger.error("No SQL migrations found in %s", MIGRATIONS_DIR)
        errors += 1
    else:
        connection = sqlite3.connect(":memory:")
        try:
            applied = MigrationRunner(connection).apply_all()
            logger.info("Migrations apply cleanly: %s", applied)
        except (sqlite3.Error, OSError, PersistenceError) as exc:
            logger.exception("Migrations failed on a scratch database: %s", exc)
            errors += 1
        finally:
            connection.close()

    config = SyncConfigStore().load()
    if config.remote_configured:
        credentials = Path(config.credentials_path)
        if not credentials.exists():
            logger.error("Credentials file not found: %s", credentials)
            errors += 1
    else:
        logger.warning("Remote store not configured; sync runs against an in-memory store")

    if errors:
        logger.error("Selfcheck failed with %s error(s). crash.log=%s", errors, log_dir / "crash.log")
        return 1
    logger.info("Selfcheck OK.")
    return 0


def _status(container: AppContainer) -> dict[str, object]:
    return {
        "online": container.connectivity.is_online(),
        "pending_operations": len(container.queue.pending()),
        "persisted_operations": container.queue.persisted_size(),
        "local_invoices": len(container.mirror),
        "last_invoice_number": container.invoice_counter.current(),
        "cached_products": len(container.product_cache),
        "device_id": container.config.device_id,
        "shop": container.config.shop,
    }


async def _watch(container: AppContainer, cycles: int | None) -> None:
    await container.invoice_counter.reseed_from_remote()
    await container.monitor.run(max_cycles=cycles)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pos-offline", description="Offline-first POS sync engine")
    parser.add_argument("--selfcheck", action="store_true", help="Check local resources and exit")
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("status", help="Show queue and local record counts")
    subcommands.add_parser("sync", help="Run one sync pass")
    watch = subcommands.add_parser("watch", help="Sync whenever connectivity comes back")
    watch.add_argument("--cycles", type=int, default=None, help="Stop after this many connectivity checks")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_dir = resolve_log_dir()
    configure_logging(log_dir)
    install_exception_hook(log_dir)
    faulthandler.enable()

    logger.info("Log dir: %s", log_dir)
    logger.info("Python: %s", sys.version)
    logger.info("CWD: %s", Path.cwd())

    if args.selfcheck:
        return _run_selfcheck(log_dir)
    if args.command is None:
        parser.print_help()
        return 2

    container = build_container()
    if args.command == "status":
        asyncio.run(container.connectivity.refresh())
        print(json.dumps(_status(container), indent=2))
        return 0
    if args.command == "sync":
        summary = asyncio.run(container.coordinator.sync())
        print(json.dumps({**summary.as_dict(), "metrics": metrics_registry.snapshot()}, indent=2, default=str))
        return 0 if summary.failed == 0 else 1
    try:
        asyncio.run(_watch(container, args.cycles))
    except KeyboardInterrupt:
        logger.info("Watch stopped")
    return 0
