"""String key-value stores backing the draw cache."""
from pathlib import Path
from typing import Dict, List, Optional, Protocol

import structlog

logger = structlog.get_logger()


class StorageQuotaExceededError(Exception):
    """Raised when a write would push the store past its capacity."""

    def __init__(self, key: str, required_bytes: int, capacity_bytes: int) -> None:
        self.key = key
        self.required_bytes = required_bytes
        self.capacity_bytes = capacity_bytes
        super().__init__(
            f"QuotaExceededError: writing '{key}' needs {required_bytes} bytes, "
            f"capacity is {capacity_bytes} bytes"
        )


class KeyValueStore(Protocol):
    """Minimal storage interface: string keys to string values."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def keys(self) -> List[str]:
        ...

    def size(self) -> int:
        ...


def _entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class MemoryStore:
    """In-process store, optionally capped like a browser's local storage."""

    def __init__(self, capacity_bytes: Optional[int] = None):
        self.capacity_bytes = capacity_bytes
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.capacity_bytes is not None:
            current = self._data.get(key)
            used = self.size() - (_entry_size(key, current) if current is not None else 0)
            required = used + _entry_size(key, value)
            if required > self.capacity_bytes:
                raise StorageQuotaExceededError(key, required, self.capacity_bytes)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data)

    def size(self) -> int:
        return sum(_entry_size(k, v) for k, v in self._data.items())


class JsonFileStore:
    """
    Store keeping one file per key inside a directory.

    Writes go through a temporary file and an atomic rename so a crash never
    leaves a half-written entry behind.
    """

    SUFFIX = ".json"

    def __init__(self, directory: str, capacity_bytes: Optional[int] = None):
        """
        Initialize the file store.

        Args:
            directory: Directory holding the entries, created if missing
            capacity_bytes: Hard limit on the summed size of keys and values
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.capacity_bytes = capacity_bytes
        logger.debug("file_store_initialized", directory=str(self.directory))

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)

        if self.capacity_bytes is not None:
            current = self.get(key)
            used = self.size() - (_entry_size(key, current) if current is not None else 0)
            required = used + _entry_size(key, value)
            if required > self.capacity_bytes:
                raise StorageQuotaExceededError(key, required, self.capacity_bytes)

        temp_path = path.with_suffix(".tmp")
        try:
            temp_path.write_text(value, encoding="utf-8")
            temp_path.replace(path)
        except OSError as e:
            logger.error("store_write_failed", key=key, error=str(e))
            if temp_path.exists():
                temp_path.unlink()
            raise

    def remove(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def keys(self) -> List[str]:
        return sorted(p.name[:-len(self.SUFFIX)] for p in self.directory.glob(f"*{self.SUFFIX}"))

    def size(self) -> int:
        total = 0
        for key in self.keys():
            value = self.get(key)
            if value is not None:
                total += _entry_size(key, value)
        return total
