from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


def _atomic_write(path: Path, data: dict) -> None:
    """Write JSON atomically using a temp file + rename to avoid corruption on crash."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    try:
        tmp.write_text(json.dumps(data, indent=2))
        os.replace(tmp, path)
    except Exception as exc:
        log.warning("Failed to save %s: %s", path, exc)
        tmp.unlink(missing_ok=True)


class JsonStore:
    """Small key-value store backed by a single JSON file.

    Every write re-reads the file and changes only its own keys, so several
    processes (the bot and ``setup_oauth.py``) can share one file without
    dropping each other's values. Reads are served from the last load.
    """

    def __init__(self, path: str | os.PathLike = "/data/jukebox.json") -> None:
        self._path = Path(path)
        self._data: dict[str, Any] = self._read({})

    @property
    def path(self) -> Path:
        return self._path

    def _read(self, fallback: dict[str, Any]) -> dict[str, Any]:
        if not self._path.exists():
            return dict(fallback)
        try:
            data = json.loads(self._path.read_text())
        except Exception as exc:
            log.warning("Failed to load %s: %s", self._path, exc)
            return dict(fallback)
        if not isinstance(data, dict):
            log.warning("Ignoring %s, it does not hold a JSON object", self._path)
            return dict(fallback)
        return data

    def reload(self) -> None:
        self._data = self._read(self._data)

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: dict[str, Any]) -> None:
        """Set several keys with a single write."""
        self.reload()
        self._data.update(values)
        _atomic_write(self._path, self._data)

    def delete(self, key: str) -> None:
        self.reload()
        if key in self._data:
            del self._data[key]
            _atomic_write(self._path, self._data)
