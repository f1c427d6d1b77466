"""
Durable Key-Value Store.

The relay persists two things: user permission rows and runtime config
overrides. Both go through the small KeyValueStore protocol so callers
never see the storage format.

Implementations:
    - InMemoryStore: Process-local dict (tests, ephemeral deployments)
    - JsonFileStore: One JSON document on disk, rewritten atomically

Keys are namespaced by prefix ("user:<id>", "config:<key>"); values
must be JSON-serializable.
"""
from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol, Tuple

from tts_relay.core.logging import error, get_logger, info, verbose
from tts_relay.utils.timeit import timeit

_LOG = get_logger("tts-relay.store")


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> bool: ...

    def items(self, prefix: str = "") -> Iterator[Tuple[str, Any]]: ...


class InMemoryStore:
    """Dict-backed store."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._data:
                return False
            del self._data[key]
            return True

    def items(self, prefix: str = "") -> Iterator[Tuple[str, Any]]:
        with self._lock:
            snapshot = [(k, v) for k, v in self._data.items() if k.startswith(prefix)]
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class JsonFileStore(InMemoryStore):
    """
    Store persisted as a single JSON file.

    Every mutation rewrites the file through a temp file and rename, so a
    crash mid-write leaves the previous version intact.

    Raises:
        OSError: When the file cannot be written.
        ValueError: When an existing file is not valid JSON.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(self._load())
        info(_LOG, "store_opened", path=str(self.path), keys=len(self))

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"store file {self.path} does not hold a JSON object")
        return data

    def _flush(self) -> None:
        with self._lock:
            payload = json.dumps(self._data, ensure_ascii=False, indent=2, sort_keys=True)

        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with timeit("store_write") as t:
                tmp.write_text(payload, encoding="utf-8")
                tmp.replace(self.path)
        except OSError as exc:
            error(_LOG, "store_write_error", path=str(self.path), error=str(exc))
            if tmp.exists():
                tmp.unlink()
            raise
        verbose(_LOG, "store_saved", keys=len(self), ms=t.timing.ms if t.timing else -1)

    def set(self, key: str, value: Any) -> None:
        super().set(key, value)
        self._flush()

    def delete(self, key: str) -> bool:
        existed = super().delete(key)
        if existed:
            self._flush()
        return existed


def open_store(path: Optional[str]) -> KeyValueStore:
    """JsonFileStore when a path is configured, otherwise InMemoryStore."""
    if path:
        return JsonFileStore(path)
    return InMemoryStore()
