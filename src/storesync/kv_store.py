"""File-backed key-value store behind the Remote Store server."""

import fcntl
import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from .errors import StoreUnavailableError

STORE_FILE = "kv_store.json"

# Key prefixes
PRODUCT_PREFIX = "product:"
ORDER_PREFIX = "order:"
USER_PREFIX = "user:"
SETTINGS_STORE_KEY = "app:settings"


class KVStore:
    """JSON values under flat string keys, in one file rewritten atomically."""

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.store_path = self.data_dir / STORE_FILE

    def _ensure_dir(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailableError(str(self.data_dir), str(e)) from e

    @contextmanager
    def _lock(self) -> Iterator[None]:
        """Acquire exclusive lock on the store file for read-modify-write operations."""
        self._ensure_dir()
        lock_path = self.data_dir / ".kv_store.lock"
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load_data(self) -> dict[str, Any]:
        if not self.store_path.exists():
            return {}
        try:
            with open(self.store_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StoreUnavailableError(str(self.store_path), str(e)) from e
        if not isinstance(data, dict):
            raise StoreUnavailableError(str(self.store_path), "store file is not an object")
        return data

    def _save_data(self, data: dict[str, Any]) -> None:
        """Save store data to disk atomically."""
        self._ensure_dir()
        try:
            fd, temp_path = tempfile.mkstemp(dir=self.data_dir, prefix=".kv_", suffix=".tmp")
        except OSError as e:
            raise StoreUnavailableError(str(self.store_path), str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(temp_path, self.store_path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise StoreUnavailableError(str(self.store_path), str(e)) from e

    def get(self, key: str) -> Any:
        """Return the stored value, or None if absent."""
        return self._load_data().get(key)

    def get_by_prefix(self, prefix: str) -> list[Any]:
        """Return every value whose key starts with ``prefix``."""
        data = self._load_data()
        return [value for key, value in data.items() if key.startswith(prefix)]

    def set(self, key: str, value: Any) -> None:
        with self._lock():
            data = self._load_data()
            data[key] = value
            self._save_data(data)

    def delete(self, key: str) -> bool:
        """Remove a key. Returns whether it existed."""
        with self._lock():
            data = self._load_data()
            if key not in data:
                return False
            del data[key]
            self._save_data(data)
            return True

    def delete_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``. Returns how many were removed."""
        with self._lock():
            data = self._load_data()
            doomed = [key for key in data if key.startswith(prefix)]
            if not doomed:
                return 0
            for key in doomed:
                del data[key]
            self._save_data(data)
            return len(doomed)
