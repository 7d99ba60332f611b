"""Pytest fixtures for storesync tests."""

import tempfile
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

import pytest

from storesync.errors import ConnectionFailedError, RequestRejectedError
from storesync.local_cache import MemoryCache


class FakeRemote:
    """
    In-memory Remote Store speaking the HTTP API's JSON protocol.

    Set ``failing`` to make every call raise ConnectionFailedError, or put
    an exception in ``errors`` keyed by ``(method, path)`` to fail one route.
    Set ``page_size`` to page product listings.
    """

    def __init__(self):
        self.kv: dict[str, Any] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.failing = False
        self.errors: dict[tuple[str, str], Exception] = {}
        self.page_size: int | None = None

    def call(self, endpoint: str, method: str = "GET", body: Any = None) -> Any:
        self.calls.append((method, endpoint, body))
        parts = urlsplit(endpoint)
        path = unquote(parts.path)
        if self.failing:
            raise ConnectionFailedError(endpoint, "remote unreachable")
        if (method, path) in self.errors:
            raise self.errors[(method, path)]
        return self._route(method, path, parse_qs(parts.query), body)

    def mutations(self) -> list[tuple[str, str, Any]]:
        return [c for c in self.calls if c[0] != "GET"]

    def _route(self, method: str, path: str, query: dict, body: Any) -> Any:
        segments = path.strip("/").split("/")
        resource = segments[0]
        ident = segments[1] if len(segments) > 1 else None

        if resource == "products":
            if method == "GET":
                include_images = query.get("includeImages") == ["true"]
                products = self._by_prefix("product:")
                if not include_images:
                    products = [self._metadata(p) for p in products]
                total = len(products)
                offset = int(query.get("offset", ["0"])[0])
                limit = self.page_size or total
                return {
                    "success": True,
                    "products": products[offset:offset + limit],
                    "total": total,
                    "hasMore": offset + limit < total,
                }
            if ident == "cleanup":
                removed = [k for k in self.kv if k.startswith("product:")]
                for key in removed:
                    del self.kv[key]
                return {"success": True, "message": f"Deleted {len(removed)} products"}
            if method == "POST":
                self.kv[f"product:{body['id']}"] = body
                return {"success": True, "product": body}
            if method == "PUT":
                stored = self.kv.get(f"product:{ident}") or {}
                if "image" not in body and "images" not in body:
                    body = {**body, **{k: v for k, v in stored.items() if k in ("image", "images")}}
                self.kv[f"product:{ident}"] = body
                return {"success": True, "product": body}
            if method == "DELETE":
                self.kv.pop(f"product:{ident}", None)
                return {"success": True}

        if resource == "orders":
            if method == "GET":
                return {"success": True, "orders": self._by_prefix("order:")}
            key = f"order:{ident or body['id']}"
            self.kv[key] = body
            return {"success": True, "order": body}

        if resource == "settings":
            if method == "GET":
                return {"success": True, "settings": self.kv.get("app:settings") or {}}
            self.kv["app:settings"] = body
            return {"success": True, "settings": body}

        if resource == "users":
            if method == "GET" and ident:
                return {"success": True, "user": self.kv.get(f"user:{ident}")}
            if method == "GET":
                return {"success": True, "users": self._by_prefix("user:")}
            self.kv[f"user:{body['email']}"] = body
            return {"success": True, "user": body}

        raise RequestRejectedError(path, 404, "Not found")

    def _by_prefix(self, prefix: str) -> list[Any]:
        return [v for k, v in self.kv.items() if k.startswith(prefix)]

    @staticmethod
    def _metadata(product: dict[str, Any]) -> dict[str, Any]:
        listed = {k: v for k, v in product.items() if k not in ("image", "images")}
        listed["hasImages"] = bool(product.get("images"))
        return listed


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cache():
    """An empty in-memory local cache."""
    return MemoryCache()


@pytest.fixture
def remote():
    """An empty in-memory remote store."""
    return FakeRemote()


@pytest.fixture
def api_client(temp_dir, monkeypatch):
    """Test client for the remote store API, backed by a temporary data dir."""
    from fastapi.testclient import TestClient

    monkeypatch.setenv("STORESYNC_DATA_DIR", str(temp_dir))
    from storesync.api import app

    return TestClient(app)


def make_product(**overrides) -> dict[str, Any]:
    """A valid product draft (no id)."""
    draft = {
        "brand": "Urban",
        "title": "Classic Tee",
        "price": 499.0,
        "originalPrice": 799.0,
        "category": "T-shirts",
        "sizes": ["S", "M", "L"],
        "colors": ["Black"],
        "image": "data:image/jpeg;base64,AAAA",
        "images": ["data:image/jpeg;base64,AAAA", "data:image/jpeg;base64,BBBB"],
        "sku": "UW-TEE-1",
        "barcode": "8901234567890",
        "totalStock": 30,
    }
    draft.update(overrides)
    return draft


@pytest.fixture
def product_draft():
    return make_product()


@pytest.fixture
def product_factory():
    """Build product drafts with field overrides."""
    return make_product
