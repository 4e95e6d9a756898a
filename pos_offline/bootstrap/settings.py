from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path


def project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def resolve_log_dir() -> Path:
    candidates: list[Path] = []
    env_dir = os.environ.get("POS_OFFLINE_LOG_DIR")
    if env_dir:
        candidates.append(Path(env_dir))
    candidates.append(project_root() / "logs")
    candidates.append(Path(tempfile.gettempdir()) / "PosOffline" / "logs")

    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
            test_file = candidate / "_write_test.tmp"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink(missing_ok=True)
            return candidate
        except OSError:
            continue

    fallback = project_root()
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def resolve_db_path() -> Path:
    env_path = os.environ.get("POS_OFFLINE_DB_PATH")
    if env_path:
        return Path(env_path)
    return project_root() / "pos_offline.sqlite3"


def _env_float(name: str, default: float) -> float:
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw_value = os.environ.get(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


@dataclass(frozen=True)
class SyncSettings:
    max_retries: int = 5
    remote_timeout_seconds: float = 15.0
    connectivity_host: str = "8.8.8.8"
    connectivity_port: int = 53
    connectivity_timeout_seconds: float = 2.0
    poll_interval_seconds: float = 5.0
    subscription_poll_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "SyncSettings":
        defaults = cls()
        return cls(
            max_retries=_env_int("POS_OFFLINE_MAX_RETRIES", defaults.max_retries),
            remote_timeout_seconds=_env_float("POS_OFFLINE_REMOTE_TIMEOUT", defaults.remote_timeout_seconds),
            connectivity_host=os.environ.get("POS_OFFLINE_PROBE_HOST", defaults.connectivity_host),
            connectivity_port=_env_int("POS_OFFLINE_PROBE_PORT", defaults.connectivity_port),
            connectivity_timeout_seconds=_env_float(
                "POS_OFFLINE_PROBE_TIMEOUT", defaults.connectivity_timeout_seconds
            ),
            poll_interval_seconds=_env_float("POS_OFFLINE_POLL_INTERVAL", defaults.poll_interval_seconds),
            subscription_poll_seconds=_env_float(
                "POS_OFFLINE_SUBSCRIPTION_POLL", defaults.subscription_poll_seconds
            ),
        )
