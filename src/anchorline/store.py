"""Key-value store abstraction for registry and workflow records."""

import json
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from pathlib import Path


class KeyValueStore(ABC):
    """get/set/iterate over JSON-compatible records keyed by string ids."""

    @abstractmethod
    def get(self, key: str) -> dict | None: ...

    @abstractmethod
    def set(self, key: str, value: dict) -> None: ...

    @abstractmethod
    def items(self, prefix: str = "") -> Iterator[tuple[str, dict]]: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def restore(self, key: str, previous: dict | None) -> None:
        """Put ``key`` back to a value read earlier with ``get``."""
        if previous is None:
            self.delete(key)
        else:
            self.set(key, previous)


class MemoryStore(KeyValueStore):
    """In-memory store. Values are copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> dict | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: dict) -> None:
        self._data[key] = json.dumps(value, sort_keys=True)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def items(self, prefix: str = "") -> Iterator[tuple[str, dict]]:
        for key in sorted(self._data):
            if key.startswith(prefix):
                yield key, json.loads(self._data[key])


class JsonFileStore(MemoryStore):
    """MemoryStore persisted to a single JSON file, rewritten on each set."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self.path = path
        self._write_lock = threading.Lock()
        if self.path.exists():
            with open(self.path) as f:
                self._data = {k: json.dumps(v, sort_keys=True) for k, v in json.load(f).items()}

    def set(self, key: str, value: dict) -> None:
        with self._write_lock:
            super().set(key, value)
            self._save()

    def delete(self, key: str) -> None:
        with self._write_lock:
            super().delete(key)
            self._save()

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump({k: json.loads(v) for k, v in self._data.items()}, f, indent=2)
        os.replace(tmp, self.path)
