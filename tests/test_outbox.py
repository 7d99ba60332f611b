"""Tests for the Outbox of pending remote mutations."""

from storesync.errors import RequestRejectedError, ServerError
from storesync.local_cache import OUTBOX_KEY, MemoryCache, read_json
from storesync.outbox import Outbox


class TestSubmit:
    def test_delivers_immediately_when_remote_is_up(self, remote, cache):
        outbox = Outbox(remote, cache)

        assert outbox.submit("POST", "/settings", {"taxRate": 5}) is True
        assert remote.kv["app:settings"] == {"taxRate": 5}
        assert outbox.pending == []
        assert cache.get(OUTBOX_KEY) is None

    def test_queues_on_transient_failure(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)

        assert outbox.submit("POST", "/settings", {"taxRate": 5}) is False
        [op] = outbox.pending
        assert (op.method, op.endpoint, op.attempts) == ("POST", "/settings", 1)
        assert "remote unreachable" in op.last_error
        assert read_json(cache, OUTBOX_KEY)[0]["endpoint"] == "/settings"

    def test_rejected_operation_is_not_queued(self, remote, cache):
        remote.errors[("POST", "/orders")] = RequestRejectedError("/orders", 400, "bad")
        outbox = Outbox(remote, cache)

        assert outbox.submit("POST", "/orders", {"id": "x"}) is False
        assert outbox.pending == []

    def test_later_operations_wait_behind_stuck_ones(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)
        outbox.submit("POST", "/settings", {"taxRate": 1})
        outbox.submit("POST", "/settings", {"taxRate": 2})

        assert [op.body for op in outbox.pending] == [{"taxRate": 1}, {"taxRate": 2}]

    def test_submit_drains_earlier_operations_first(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)
        outbox.submit("POST", "/settings", {"taxRate": 1})

        remote.failing = False
        assert outbox.submit("POST", "/settings", {"taxRate": 2}) is True
        assert remote.kv["app:settings"] == {"taxRate": 2}
        sent = [body for method, _, body in remote.mutations()]
        assert sent[-2:] == [{"taxRate": 1}, {"taxRate": 2}]


class TestDrain:
    def test_replays_in_order(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)
        outbox.submit("POST", "/orders", {"id": "A"})
        outbox.submit("PUT", "/orders/A", {"id": "A", "status": "shipped"})

        remote.failing = False
        result = outbox.drain()

        assert (result.sent, result.dropped, result.remaining) == (2, 0, 0)
        assert remote.kv["order:A"]["status"] == "shipped"
        assert cache.get(OUTBOX_KEY) is None

    def test_stops_at_transient_failure(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)
        outbox.submit("POST", "/orders", {"id": "A"})

        result = outbox.drain()

        assert (result.sent, result.remaining) == (0, 1)
        assert outbox.pending[0].attempts == 2

    def test_drops_rejected_and_continues(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)
        outbox.submit("POST", "/orders", {"id": "A"})
        outbox.submit("POST", "/orders", {"id": "B"})

        remote.failing = False
        remote.errors[("POST", "/orders")] = ServerError("/orders", 500, "flaky")
        assert outbox.drain().remaining == 2

        remote.errors[("POST", "/orders")] = RequestRejectedError("/orders", 400, "bad")
        result = outbox.drain()
        assert (result.sent, result.dropped, result.remaining) == (0, 2, 0)

    def test_queue_survives_restart(self, remote, cache):
        remote.failing = True
        Outbox(remote, cache).submit("DELETE", "/products/1")

        reopened = Outbox(remote, cache)
        assert [op.endpoint for op in reopened.pending] == ["/products/1"]

    def test_unreadable_queue_is_discarded(self, remote):
        cache = MemoryCache(initial={OUTBOX_KEY: "{broken"})
        assert Outbox(remote, cache).pending == []

    def test_cache_full_keeps_queue_in_memory(self, remote):
        remote.failing = True
        outbox = Outbox(remote, MemoryCache(capacity=10))

        assert outbox.submit("POST", "/settings", {"taxRate": 5}) is False
        assert len(outbox.pending) == 1


class TestStoredBody:
    def test_stored_body_is_persisted_in_place_of_body(self, remote, cache):
        remote.failing = True
        outbox = Outbox(remote, cache)

        outbox.submit("POST", "/products", {"id": "1", "images": ["big"]}, {"id": "1"})

        assert read_json(cache, OUTBOX_KEY)[0]["body"] == {"id": "1"}
        remote.failing = False
        outbox.drain()
        assert remote.kv["product:1"] == {"id": "1", "images": ["big"]}

    def test_reloaded_queue_replays_stored_body(self, remote, cache):
        remote.failing = True
        Outbox(remote, cache).submit("POST", "/products", {"id": "1", "images": ["big"]}, {"id": "1"})

        remote.failing = False
        assert Outbox(remote, cache).drain().sent == 1
        assert remote.kv["product:1"] == {"id": "1"}
