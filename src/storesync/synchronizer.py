"""Shared load and write pipeline for the domain synchronizers."""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Generic, TypeVar

from .errors import CacheUnavailableError, InvalidRecordError, StoresyncError
from .local_cache import LocalCache, read_json, write_json
from .outbox import Outbox, RemoteCaller

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadSource(str, Enum):
    """Where a loaded collection came from."""

    REMOTE = "remote"
    CACHE = "cache"
    DEFAULT = "default"


@dataclass(frozen=True)
class LoadOutcome(Generic[T]):
    """Typed result of a load: the adopted value, its source, and the remote failure if any."""

    value: T
    source: LoadSource
    error: Exception | None = None


class Synchronizer(Generic[T]):
    """
    Reconciles one entity collection between the Remote Store and the local cache.

    Subclasses provide the pipeline stages:

    - ``_fetch_remote()``: value from the Remote Store, or None when the
      remote has no data. Raises StoresyncError on failure.
    - ``_parse_cached(data)``: value from decoded cache JSON.
    - ``_default()``: the empty/default value.
    - ``_snapshot()``: JSON-ready projection written to the cache.
    - ``_adopt(value)``: replace in-memory state.
    - ``_apply_pending(value)``: lay mutations still waiting in the outbox
      over a remote value, so offline changes survive a reload.
    """

    name = "collection"
    cache_key: str = ""

    def __init__(self, client: RemoteCaller, cache: LocalCache, outbox: Outbox | None = None):
        self.client = client
        self.cache = cache
        self.outbox = outbox or Outbox(client, cache)
        self.loading = True

    # --- Load pipeline ---

    def load(self) -> LoadOutcome[T]:
        """Remote first, then local cache, then default. Never raises for data failures."""
        self.loading = True
        try:
            outcome = self._resolve()
            if outcome.source is LoadSource.REMOTE and self.outbox.pending:
                outcome = replace(outcome, value=self._apply_pending(outcome.value))
            self._adopt(outcome.value)
            if outcome.source is LoadSource.REMOTE:
                self._persist()
            return outcome
        finally:
            self.loading = False

    def _resolve(self) -> LoadOutcome[T]:
        remote_error: Exception | None = None
        try:
            value = self._fetch_remote()
            if value is not None:
                logger.info("Loaded %s from remote store", self.name)
                return LoadOutcome(value, LoadSource.REMOTE)
            logger.warning("Remote store has no %s, falling back to local cache", self.name)
        except StoresyncError as e:
            remote_error = e
            logger.error("Error loading %s from remote store: %s", self.name, e)

        cached = self._read_cached()
        if cached is not None:
            logger.info("Loaded %s from local cache", self.name)
            return LoadOutcome(cached, LoadSource.CACHE, remote_error)

        logger.warning("No %s available, starting with defaults", self.name)
        return LoadOutcome(self._default(), LoadSource.DEFAULT, remote_error)

    def _read_cached(self) -> T | None:
        try:
            data = read_json(self.cache, self.cache_key)
            if data is None:
                return None
            return self._parse_cached(data)
        except (StoresyncError, ValueError, KeyError, TypeError) as e:
            logger.error("Error parsing cached %s: %s", self.name, e)
            return None

    # --- Write pipeline ---

    def _propagate(
        self, method: str, endpoint: str, body: Any = None, stored_body: Any = None
    ) -> bool:
        """Best-effort remote delivery through the outbox."""
        delivered = self.outbox.submit(method, endpoint, body, stored_body)
        if not delivered:
            logger.warning("Kept optimistic %s change; remote delivery pending", self.name)
        return delivered

    def _persist(self) -> None:
        """Write the cache projection, absorbing cache failures."""
        self._write_cache(self.cache_key, self._snapshot())

    def _write_cache(self, key: str, value: Any) -> bool:
        try:
            write_json(self.cache, key, value)
            return True
        except CacheUnavailableError as e:
            logger.warning("Skipping local cache write for %s: %s", key, e)
            return False

    def _remove_cache(self, *keys: str) -> None:
        for key in keys:
            try:
                self.cache.remove(key)
            except CacheUnavailableError as e:
                logger.warning("Could not remove %s from local cache: %s", key, e)

    # --- Stages ---

    def _fetch_remote(self) -> T | None:
        raise NotImplementedError

    def _parse_cached(self, data: Any) -> T:
        raise NotImplementedError

    def _default(self) -> T:
        raise NotImplementedError

    def _snapshot(self) -> Any:
        raise NotImplementedError

    def _adopt(self, value: T) -> None:
        raise NotImplementedError

    def _apply_pending(self, value: T) -> T:
        return value


def parse_collection(items: Any, parser, kind: str) -> list:
    """Parse a JSON list with ``parser``; anything but a list is an invalid record."""
    if not isinstance(items, list):
        raise InvalidRecordError(kind, "expected a list")
    return [parser(item) for item in items]
