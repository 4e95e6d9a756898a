from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def resolve_appdata_dir() -> Path:
    override = os.environ.get("POS_OFFLINE_HOME")
    if override:
        return Path(override)
    env_dir = os.environ.get("LOCALAPPDATA")
    if env_dir:
        base_dir = Path(env_dir)
    else:
        base_dir = Path.home() / ".local" / "share"
    return base_dir / "PosOffline"


@dataclass(frozen=True)
class SyncConfig:
    spreadsheet_id: str
    credentials_path: str
    device_id: str
    shop: str = ""

    @property
    def remote_configured(self) -> bool:
        return bool(self.spreadsheet_id and self.credentials_path)


class SyncConfigStore:
    def __init__(self, base_dir: Path | None = None) -> None:
        self._base_dir = base_dir or resolve_appdata_dir()
        self._config_path = self._base_dir / "config.json"

    @property
    def config_path(self) -> Path:
        return self._config_path

    def load(self) -> SyncConfig:
        payload = self._read_payload()
        device_id = str(payload.get("device_id", "")).strip()
        if not device_id:
            device_id = self._generate_device_id()
            payload["device_id"] = device_id
            self._write_payload(payload)
        return SyncConfig(
            spreadsheet_id=str(payload.get("spreadsheet_id", "")).strip(),
            credentials_path=str(payload.get("path_credentials_json", "")).strip(),
            device_id=device_id,
            shop=str(payload.get("shop", "")).strip(),
        )

    def save(self, config: SyncConfig) -> SyncConfig:
        payload = {
            "spreadsheet_id": config.spreadsheet_id,
            "path_credentials_json": config.credentials_path,
            "device_id": config.device_id or self._generate_device_id(),
            "shop": config.shop,
        }
        self._write_payload(payload)
        return SyncConfig(
            spreadsheet_id=payload["spreadsheet_id"],
            credentials_path=payload["path_credentials_json"],
            device_id=payload["device_id"],
            shop=payload["shop"],
        )

    def _read_payload(self) -> dict[str, Any]:
        if not self._config_path.exists():
            return {}
        try:
            payload = json.loads(self._config_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.exception("Could not read config.json: %s", exc)
            return {}
        return payload if isinstance(payload, dict) else {}

    def _write_payload(self, payload: dict[str, Any]) -> None:
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")

    @staticmethod
    def _generate_device_id() -> str:
        return str(uuid.uuid4())
