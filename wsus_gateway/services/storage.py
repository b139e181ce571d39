"""Key-value persistence for the last telemetry snapshot."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional, Protocol

from wsus_gateway.config import Settings, settings
from wsus_gateway.errors import StorageQuotaExceeded
from wsus_gateway.models.telemetry import EnvironmentStats, TelemetrySnapshot, WsusComputer
from wsus_gateway.utils.logging import get_logger

log = get_logger(__name__)

STATS_KEY = "wsus_stats"
COMPUTERS_KEY = "wsus_computers"
REFRESHED_AT_KEY = "wsus_refreshed_at"
TRUNCATED_COMPUTERS = 100


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def clear(self) -> None: ...


def _encoded_size(data: dict[str, str]) -> int:
    return len(json.dumps(data).encode("utf-8"))


class MemoryKeyValueStore:
    """Dict-backed store with an optional byte quota."""

    def __init__(self, quota_bytes: int | None = None) -> None:
        self._data: dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        candidate = {**self._data, key: value}
        if self.quota_bytes is not None and _encoded_size(candidate) > self.quota_bytes:
            raise StorageQuotaExceeded(f"storing {key!r} would exceed {self.quota_bytes} bytes", key=key)
        self._data = candidate

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class JsonFileKeyValueStore:
    """One JSON document on disk, rewritten atomically on every change."""

    def __init__(self, path: str | Path, quota_bytes: int | None = None) -> None:
        self._path = Path(path)
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = self._load()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("storage.load_failed", path=str(self._path), error=str(exc))
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp, self._path)

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        candidate = {**self._data, key: value}
        if self.quota_bytes is not None and _encoded_size(candidate) > self.quota_bytes:
            raise StorageQuotaExceeded(f"storing {key!r} would exceed {self.quota_bytes} bytes", key=key)
        self._write(candidate)
        self._data = candidate

    def remove(self, key: str) -> None:
        if key in self._data:
            data = dict(self._data)
            del data[key]
            self._write(data)
            self._data = data

    def clear(self) -> None:
        self._write({})
        self._data = {}


class SnapshotStore:
    """Persist and reload :class:`TelemetrySnapshot` objects."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _write(self, stats: EnvironmentStats, computers: list[WsusComputer], refreshed_at: str) -> None:
        self._store.set(STATS_KEY, stats.model_dump_json())
        self._store.set(COMPUTERS_KEY, json.dumps([c.model_dump(mode="json") for c in computers]))
        self._store.set(REFRESHED_AT_KEY, refreshed_at)

    def persist(self, snapshot: TelemetrySnapshot) -> bool:
        """Store *snapshot*.  Never raises; returns whether it was stored.

        On a quota failure the computer list is cut to the most recent
        entries and the write is tried once more.
        """
        refreshed_at = snapshot.refreshed_at.isoformat() if snapshot.refreshed_at else ""
        try:
            self._write(snapshot.stats, snapshot.computers, refreshed_at)
            return True
        except StorageQuotaExceeded:
            log.warning("storage.quota_exceeded", computers=len(snapshot.computers))
        except OSError as exc:
            log.error("storage.persist_failed", error=str(exc))
            return False

        try:
            self._store.remove(COMPUTERS_KEY)
            self._write(snapshot.stats, snapshot.computers[-TRUNCATED_COMPUTERS:], refreshed_at)
            return True
        except (StorageQuotaExceeded, OSError) as exc:
            log.error("storage.persist_failed", error=str(exc), truncated=True)
            return False

    def load(self) -> Optional[TelemetrySnapshot]:
        raw_stats = self._store.get(STATS_KEY)
        if not raw_stats:
            return None
        try:
            stats = EnvironmentStats.model_validate_json(raw_stats)
            computers_data: list[Any] = json.loads(self._store.get(COMPUTERS_KEY) or "[]")
            computers = [WsusComputer.model_validate(c) for c in computers_data]
        except ValueError as exc:
            log.warning("storage.snapshot_corrupt", error=str(exc))
            return None

        refreshed_at = self._store.get(REFRESHED_AT_KEY) or None
        return TelemetrySnapshot.model_validate(
            {
                "stats": stats,
                "computers": computers,
                "refreshed_at": refreshed_at,
                "from_cache": True,
            }
        )

    def clear(self) -> None:
        self._store.clear()


def build_snapshot_store(cfg: Settings | None = None) -> SnapshotStore:
    _cfg = cfg or settings
    if _cfg.state_path:
        return SnapshotStore(JsonFileKeyValueStore(_cfg.state_path, _cfg.state_quota_bytes))
    return SnapshotStore(MemoryKeyValueStore(_cfg.state_quota_bytes))
