"""Key-value persistence used by the position, cooldown and threshold stores."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Protocol

from regime_trader.errors import PersistenceFailure
from regime_trader.utils.logging import get_logger


class KeyValueStore(Protocol):
    """Minimal keyed document store."""

    def load_all(self) -> dict[str, Any]:
        """Return every key/value pair."""

    def save_all(self, data: dict[str, Any]) -> None:
        """Atomically replace the whole store."""

    def get(self, key: str) -> Any | None:
        """Return one value or None."""

    def put(self, key: str, value: Any) -> None:
        """Insert or replace one value."""

    def remove(self, key: str) -> bool:
        """Delete one key; True when something was removed."""


class MemoryStore:
    """In-process store, mostly for tests and dry runs."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = json.loads(json.dumps(initial or {}))

    def load_all(self) -> dict[str, Any]:
        return json.loads(json.dumps(self._data))

    def save_all(self, data: dict[str, Any]) -> None:
        self._data = json.loads(json.dumps(data))

    def get(self, key: str) -> Any | None:
        return self.load_all().get(key)

    def put(self, key: str, value: Any) -> None:
        data = self.load_all()
        data[key] = value
        self.save_all(data)

    def remove(self, key: str) -> bool:
        data = self.load_all()
        if key not in data:
            return False
        del data[key]
        self.save_all(data)
        return True


class JsonFileStore:
    """JSON document on disk with atomic replace and versioned backups.

    When ``backups`` is positive, the current file is copied to
    ``<name>.backup.<epoch_ms>`` before every overwrite and only the newest
    ``backups`` copies are kept.
    """

    def __init__(self, path: Path, *, backups: int = 0) -> None:
        self._path = path
        self._backups = backups
        self._lock = threading.Lock()
        self._logger = get_logger("regime_trader.storage.kv")

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self._logger.error("store_load_failed", path=str(self._path), error=str(exc))
            return {}
        if not isinstance(raw, dict):
            self._logger.error("store_not_a_mapping", path=str(self._path))
            return {}
        return raw

    def save_all(self, data: dict[str, Any]) -> None:
        with self._lock:
            self._write(data)

    def get(self, key: str) -> Any | None:
        return self.load_all().get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            data = self.load_all()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> bool:
        with self._lock:
            data = self.load_all()
            if key not in data:
                return False
            del data[key]
            self._write(data)
            return True

    def backup_files(self) -> list[Path]:
        pattern = f"{self._path.name}.backup.*"
        return sorted(self._path.parent.glob(pattern), key=lambda p: p.name)

    def _write(self, data: dict[str, Any]) -> None:
        serialized = json.dumps(data, ensure_ascii=True, indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._backups > 0 and self._path.exists():
                self._backup()
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(serialized)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceFailure(f"{self._path}: {exc}") from exc

    def _backup(self) -> None:
        stamp = int(time.time() * 1000)
        target = self._path.with_name(f"{self._path.name}.backup.{stamp}")
        shutil.copy2(self._path, target)
        for stale in self.backup_files()[: -self._backups]:
            stale.unlink(missing_ok=True)
