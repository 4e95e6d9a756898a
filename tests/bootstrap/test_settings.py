from __future__ import annotations

from pathlib import Path

from pos_offline.bootstrap import settings
from pos_offline.bootstrap.settings import SyncSettings


def test_resolve_log_dir_uses_env_path(monkeypatch, tmp_path) -> None:
    env_dir = tmp_path / "env_logs"
    monkeypatch.setenv("POS_OFFLINE_LOG_DIR", str(env_dir))

    resolved = settings.resolve_log_dir()

    assert resolved == env_dir
    assert resolved.exists()


def test_resolve_log_dir_falls_back_to_project_root(monkeypatch, tmp_path) -> None:
    project_root = tmp_path / "project"
    monkeypatch.delenv("POS_OFFLINE_LOG_DIR", raising=False)
    monkeypatch.setattr(settings, "project_root", lambda: project_root)
    monkeypatch.setattr(settings.tempfile, "gettempdir", lambda: str(tmp_path / "tmpbase"))

    original_mkdir = Path.mkdir

    def failing_candidate_mkdir(self: Path, parents: bool = False, exist_ok: bool = False):
        if self in {project_root / "logs", tmp_path / "tmpbase" / "PosOffline" / "logs"}:
            raise OSError("cannot create candidate")
        return original_mkdir(self, parents=parents, exist_ok=exist_ok)

    monkeypatch.setattr(Path, "mkdir", failing_candidate_mkdir)

    resolved = settings.resolve_log_dir()

    assert resolved == project_root
    assert resolved.exists()


def test_resolve_db_path_honours_env(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("POS_OFFLINE_DB_PATH", str(tmp_path / "pos.sqlite3"))

    assert settings.resolve_db_path() == tmp_path / "pos.sqlite3"


def test_sync_settings_from_env_ignores_garbage(monkeypatch) -> None:
    monkeypatch.setenv("POS_OFFLINE_MAX_RETRIES", "8")
    monkeypatch.setenv("POS_OFFLINE_REMOTE_TIMEOUT", "not-a-number")
    monkeypatch.setenv("POS_OFFLINE_PROBE_HOST", "1.1.1.1")

    loaded = SyncSettings.from_env()

    assert loaded.max_retries == 8
    assert loaded.remote_timeout_seconds == SyncSettings().remote_timeout_seconds
    assert loaded.connectivity_host == "1.1.1.1"
