"""Local persisted cache: a capacity-limited string key-value store.

The cache plays the role of browser local storage. It has no transactions
and a hard capacity ceiling; writes that would cross the ceiling raise
CacheUnavailableError and leave the cache untouched.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from .errors import CacheUnavailableError

# Platform ceiling, counted in characters of keys plus values
DEFAULT_CAPACITY = 5 * 1024 * 1024

# --- Cache keys ---

USER_KEY = "storefront_user"
ADDRESSES_KEY = "storefront_addresses"
WISHLIST_KEY = "storefront_wishlist"
USER_ORDERS_KEY_PREFIX = "storefront_orders_"
# Pre-per-user order history, only ever removed
LEGACY_ORDERS_KEY = "storefront_orders"
PRODUCTS_META_KEY = "storefront_products_meta"
# Old product format with embedded images, only ever removed
LEGACY_PRODUCTS_KEY = "storefront_products"
ALL_ORDERS_KEY = "storefront_all_orders"
SETTINGS_KEY = "storeSettings"
ADMIN_SESSION_KEY = "storefront_admin_auth"
MIGRATED_KEY = "storefront_migrated_to_remote"
CART_KEY = "storefront_cart"
OUTBOX_KEY = "storefront_outbox"


def user_orders_key(email: str) -> str:
    """Key of the per-user order history entry."""
    return f"{USER_ORDERS_KEY_PREFIX}{email}"


class LocalCache(Protocol):
    """Protocol for local persisted caches."""

    def get(self, key: str) -> str | None:
        """Return the stored string, or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a string. Raises CacheUnavailableError over capacity."""
        ...

    def remove(self, key: str) -> None:
        """Remove a key; absent keys are ignored."""
        ...

    def clear(self) -> None:
        """Remove every key."""
        ...

    def keys(self) -> list[str]:
        """List stored keys."""
        ...


class MemoryCache:
    """In-memory cache with a capacity ceiling."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, initial: dict[str, str] | None = None):
        self.capacity = capacity
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise CacheUnavailableError(key, "values must be strings")
        used = _entries_size(self._data) - _entry_size(key, self._data.get(key))
        if used + _entry_size(key, value) > self.capacity:
            raise CacheUnavailableError(key, "quota exceeded")
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)


class FileCache(MemoryCache):
    """Cache persisted as one JSON object on disk, rewritten atomically."""

    def __init__(self, path: Path, capacity: int = DEFAULT_CAPACITY):
        self.path = Path(path)
        super().__init__(capacity, self._load())

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise CacheUnavailableError(str(self.path), f"unreadable cache file: {e}") from e
        if not isinstance(data, dict):
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _flush(self, key: str) -> None:
        """Write the whole cache to disk atomically."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=self.path.parent, prefix=".cache_", suffix=".tmp"
            )
        except OSError as e:
            raise CacheUnavailableError(key, str(e)) from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise CacheUnavailableError(key, str(e)) from e

    def set(self, key: str, value: str) -> None:
        previous = self._data.get(key)
        super().set(key, value)
        try:
            self._flush(key)
        except CacheUnavailableError:
            if previous is None:
                self._data.pop(key, None)
            else:
                self._data[key] = previous
            raise

    def remove(self, key: str) -> None:
        if key in self._data:
            super().remove(key)
            self._flush(key)

    def clear(self) -> None:
        super().clear()
        self._flush("*")


def _entry_size(key: str, value: str | None) -> int:
    if value is None:
        return 0
    return len(key) + len(value)


def _entries_size(data: dict[str, str]) -> int:
    return sum(_entry_size(k, v) for k, v in data.items())


# --- JSON helpers ---


def footprint(cache: LocalCache) -> int:
    """Total serialized size of every entry (keys plus values)."""
    total = 0
    for key in cache.keys():
        total += _entry_size(key, cache.get(key))
    return total


def read_json(cache: LocalCache, key: str) -> Any:
    """
    Read and decode a JSON entry.

    Returns None when the key is absent. Raises ValueError on corrupt JSON.
    """
    raw = cache.get(key)
    if raw is None:
        return None
    return json.loads(raw)


def write_json(cache: LocalCache, key: str, value: Any) -> None:
    """Encode and store a JSON entry. Raises CacheUnavailableError over capacity."""
    cache.set(key, json.dumps(value, ensure_ascii=False))
