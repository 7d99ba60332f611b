"""Durable queue of remote mutations that could not be delivered yet."""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import (
    CacheUnavailableError,
    RemoteStoreError,
    RequestRejectedError,
)
from .local_cache import OUTBOX_KEY, LocalCache, read_json, write_json
from .models import _generate_id, _utc_now
from .remote_client import ensure_success

logger = logging.getLogger(__name__)


class RemoteCaller(Protocol):
    """The one Remote Store Client capability synchronizers depend on."""

    def call(self, endpoint: str, method: str = "GET", body: Any = None) -> Any:
        ...


@dataclass
class PendingOperation:
    """A remote mutation waiting for delivery."""

    id: str
    method: str
    endpoint: str
    body: Any = None
    created_at: str = field(default_factory=_utc_now)
    attempts: int = 0
    last_error: str | None = None
    # Persisted in place of body when body must stay out of the cache
    stored_body: Any = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "endpoint": self.endpoint,
            "body": self.body if self.stored_body is None else self.stored_body,
            "created_at": self.created_at,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PendingOperation":
        return cls(
            id=data["id"],
            method=data["method"],
            endpoint=data["endpoint"],
            body=data.get("body"),
            created_at=data.get("created_at", ""),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
        )


@dataclass
class DrainResult:
    """Outcome of one drain pass."""

    sent: int = 0
    dropped: int = 0
    remaining: int = 0


class Outbox:
    """
    FIFO of pending remote mutations, persisted in the local cache.

    Local state is authoritative as soon as a mutation is applied; the
    outbox only tracks delivery to the Remote Store. Operations are
    delivered strictly in submission order.
    """

    def __init__(self, client: RemoteCaller, cache: LocalCache):
        self.client = client
        self.cache = cache
        self._queue: list[PendingOperation] = self._load()

    @property
    def pending(self) -> list[PendingOperation]:
        return list(self._queue)

    def _load(self) -> list[PendingOperation]:
        try:
            data = read_json(self.cache, OUTBOX_KEY)
            if not isinstance(data, list):
                return []
            return [PendingOperation.from_dict(op) for op in data]
        except (CacheUnavailableError, ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable outbox: %s", e)
            return []

    def _save(self) -> None:
        try:
            if self._queue:
                write_json(self.cache, OUTBOX_KEY, [op.to_dict() for op in self._queue])
            else:
                self.cache.remove(OUTBOX_KEY)
        except CacheUnavailableError as e:
            logger.warning("Outbox kept in memory only: %s", e)

    def _send(self, op: PendingOperation) -> None:
        ensure_success(self.client.call(op.endpoint, op.method, op.body), op.endpoint)

    def submit(
        self, method: str, endpoint: str, body: Any = None, stored_body: Any = None
    ) -> bool:
        """
        Deliver a mutation now, or queue it behind earlier failures.

        Args:
            stored_body: What to persist instead of ``body`` if the operation
                has to be queued. ``body`` itself is then only held in memory,
                so a queue reloaded after a restart replays ``stored_body``.

        Returns True if the mutation reached the Remote Store.
        """
        op = PendingOperation(
            id=_generate_id(),
            method=method,
            endpoint=endpoint,
            body=body,
            stored_body=stored_body,
        )
        if self._queue:
            self.drain()
        if self._queue:
            # Earlier operations are still stuck; keep ordering
            self._queue.append(op)
            self._save()
            logger.warning("Queued %s %s behind %d pending operation(s)",
                           method, endpoint, len(self._queue) - 1)
            return False

        try:
            self._send(op)
            return True
        except RequestRejectedError as e:
            logger.error("Remote store rejected %s %s: %s", method, endpoint, e)
            return False
        except RemoteStoreError as e:
            op.attempts = 1
            op.last_error = str(e)
            self._queue.append(op)
            self._save()
            logger.warning("Queued %s %s for retry: %s", method, endpoint, e)
            return False

    def drain(self) -> DrainResult:
        """Replay pending operations in order until one fails transiently."""
        result = DrainResult()
        while self._queue:
            op = self._queue[0]
            try:
                self._send(op)
                result.sent += 1
            except RequestRejectedError as e:
                logger.error("Dropping rejected operation %s %s: %s", op.method, op.endpoint, e)
                result.dropped += 1
            except RemoteStoreError as e:
                op.attempts += 1
                op.last_error = str(e)
                logger.warning("Outbox drain stopped at %s %s: %s", op.method, op.endpoint, e)
                break
            self._queue.pop(0)
        self._save()
        result.remaining = len(self._queue)
        return result
