"""Tests for the products synchronizer."""

import json

import pytest

from storesync.errors import InvalidRecordError, ProductNotFoundError, ServerError
from storesync.local_cache import (
    LEGACY_PRODUCTS_KEY,
    OUTBOX_KEY,
    PRODUCTS_META_KEY,
    MemoryCache,
    read_json,
)
from storesync.models import Product
from storesync.products import ProductSynchronizer
from storesync.synchronizer import LoadSource


class TestLoad:
    def test_loading_flag_cleared_after_remote_load(self, remote, cache):
        sync = ProductSynchronizer(remote, cache)
        assert sync.loading is True

        outcome = sync.load()

        assert sync.loading is False
        assert outcome.source is LoadSource.REMOTE
        assert outcome.value == []

    def test_remote_failure_falls_back_to_cache(self, remote, cache, product_draft):
        ProductSynchronizer(remote, cache).add_product(product_draft)
        remote.failing = True

        sync = ProductSynchronizer(remote, cache)
        outcome = sync.load()

        assert outcome.source is LoadSource.CACHE
        assert outcome.error is not None
        assert sync.loading is False
        [product] = sync.products
        assert product.title == "Classic Tee"
        assert product.images == []
        assert product.has_images is True

    def test_corrupt_cache_falls_back_to_empty(self, remote):
        remote.failing = True
        cache = MemoryCache(initial={PRODUCTS_META_KEY: "not json"})

        sync = ProductSynchronizer(remote, cache)
        outcome = sync.load()

        assert outcome.source is LoadSource.DEFAULT
        assert sync.products == []
        assert sync.loading is False

    def test_default_load_requests_metadata_only(self, remote, cache):
        ProductSynchronizer(remote, cache).load()
        assert remote.calls[0][1] == "/products"

    def test_refresh_with_images(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)

        sync.refresh_products(include_images=True)

        assert remote.calls[-1][1] == "/products?includeImages=true"
        assert sync.get_product(added.id).images == product_draft["images"]
        assert sync.include_images is False

    def test_pages_through_large_catalog(self, remote, cache, product_factory):
        remote.page_size = 2
        for i in range(5):
            remote.kv[f"product:{i}"] = {**product_factory(title=f"P{i}"), "id": str(i)}

        sync = ProductSynchronizer(remote, cache)
        sync.load()

        assert [p.id for p in sync.products] == ["0", "1", "2", "3", "4"]
        assert [c[1] for c in remote.calls] == [
            "/products", "/products?offset=2", "/products?offset=4",
        ]

    def test_invalid_remote_record_falls_back(self, remote, cache):
        remote.kv["product:1"] = {"id": "1", "title": "Bad", "price": -5}
        outcome = ProductSynchronizer(remote, cache).load()
        assert outcome.source is LoadSource.DEFAULT
        assert isinstance(outcome.error, InvalidRecordError)


class TestAddProduct:
    def test_prepends_and_assigns_unique_ids(self, remote, cache, product_factory):
        sync = ProductSynchronizer(remote, cache)
        first = sync.add_product(product_factory(title="First"))
        second = sync.add_product(product_factory(title="Second"))

        assert first.id != second.id
        assert [p.title for p in sync.products] == ["Second", "First"]

    def test_rapid_ids_never_collide(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        ids = {sync.add_product(product_draft).id for _ in range(50)}
        assert len(ids) == 50

    def test_round_trip_through_metadata_reload(self, remote, cache, product_draft):
        added = ProductSynchronizer(remote, cache).add_product(product_draft)

        reloaded = ProductSynchronizer(remote, cache)
        reloaded.load()
        [product] = reloaded.products

        for field in ("id", "brand", "title", "price", "original_price", "category",
                      "sizes", "colors", "sku", "barcode", "total_stock", "created_at"):
            assert getattr(product, field) == getattr(added, field)
        assert product.has_images is True

    def test_has_images_false_without_images(self, remote, cache, product_factory):
        ProductSynchronizer(remote, cache).add_product(
            product_factory(image="", images=[])
        )
        remote.failing = True
        reloaded = ProductSynchronizer(remote, cache)
        reloaded.load()
        assert reloaded.products[0].has_images is False

    def test_cache_never_holds_images(self, remote, product_factory):
        cache = MemoryCache(capacity=20_000)
        sync = ProductSynchronizer(remote, cache)
        big_image = "data:image/jpeg;base64," + "A" * 5_000
        for i in range(10):
            sync.add_product(product_factory(title=f"P{i}", images=[big_image], image=big_image))

        raw = cache.get(PRODUCTS_META_KEY)
        assert raw is not None
        assert "base64" not in raw
        assert raw == json.dumps([p.to_metadata() for p in sync.products], ensure_ascii=False)

    def test_remote_failure_keeps_optimistic_product(self, remote, cache, product_draft):
        remote.failing = True
        sync = ProductSynchronizer(remote, cache)

        product = sync.add_product(product_draft)

        assert sync.products == [product]
        assert read_json(cache, PRODUCTS_META_KEY)[0]["id"] == product.id
        assert len(sync.outbox.pending) == 1

    def test_invalid_draft_rejected_before_mutation(self, remote, cache, product_factory):
        sync = ProductSynchronizer(remote, cache)
        with pytest.raises(InvalidRecordError):
            sync.add_product(product_factory(price=0))
        assert sync.products == []
        assert remote.mutations() == []

    def test_cache_write_failure_is_absorbed(self, remote, product_draft):
        sync = ProductSynchronizer(remote, MemoryCache(capacity=10))
        product = sync.add_product(product_draft)
        assert sync.products == [product]


class TestUpdateAndDelete:
    def test_update_replaces_product(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)

        updated = sync.update_product(added.id, {**product_draft, "price": 599.0})

        assert updated.price == 599.0
        assert updated.created_at == added.created_at
        assert remote.kv[f"product:{added.id}"]["price"] == 599.0

    def test_update_cannot_change_id(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)
        with pytest.raises(InvalidRecordError):
            sync.update_product(added.id, {**product_draft, "id": "other"})

    def test_update_unknown_product(self, remote, cache, product_draft):
        with pytest.raises(ProductNotFoundError):
            ProductSynchronizer(remote, cache).update_product("missing", product_draft)

    def test_delete_removes_everywhere(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)
        cache.set(LEGACY_PRODUCTS_KEY, "[]")

        sync.delete_product(added.id)

        assert sync.products == []
        assert f"product:{added.id}" not in remote.kv
        assert read_json(cache, PRODUCTS_META_KEY) == []
        assert cache.get(LEGACY_PRODUCTS_KEY) is None

    def test_delete_unknown_product(self, remote, cache):
        with pytest.raises(ProductNotFoundError):
            ProductSynchronizer(remote, cache).delete_product("missing")

    def test_cleanup_all(self, remote, cache, product_factory):
        sync = ProductSynchronizer(remote, cache)
        sync.add_product(product_factory(title="A"))
        sync.add_product(product_factory(title="B"))

        assert sync.cleanup_all() == 2
        assert sync.products == []
        assert not any(k.startswith("product:") for k in remote.kv)
        assert cache.get(PRODUCTS_META_KEY) is None


class TestProductParsing:
    def test_invalid_images_filtered(self, product_draft):
        product = Product.from_dict({**product_draft, "id": "1", "images": ["ok", "", None, 3]})
        assert product.images == ["ok"]

    def test_fractional_stock_rejected(self, product_draft):
        with pytest.raises(InvalidRecordError):
            Product.from_dict({**product_draft, "id": "1", "totalStock": 2.5})

    def test_metadata_projection_has_no_image_fields(self, product_draft):
        meta = Product.from_dict({**product_draft, "id": "1"}).to_metadata()
        assert "image" not in meta and "images" not in meta
        assert meta["hasImages"] is True


class TestQueuedWrites:
    def test_queued_writes_keep_images_out_of_cache(self, remote, product_factory):
        remote.failing = True
        cache = MemoryCache()
        sync = ProductSynchronizer(remote, cache)
        big_image = "data:image/jpeg;base64," + "A" * 5_000

        added = sync.add_product(product_factory(image=big_image, images=[big_image]))
        sync.update_product(added.id, product_factory(price=599.0, image=big_image, images=[big_image]))

        assert len(sync.outbox.pending) == 2
        assert cache.get(OUTBOX_KEY) is not None
        for key in cache.keys():
            assert "base64" not in cache.get(key)

    def test_queued_images_delivered_from_memory(self, remote, cache, product_draft):
        remote.failing = True
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)

        remote.failing = False
        sync.outbox.drain()

        assert remote.kv[f"product:{added.id}"]["images"] == product_draft["images"]

    def test_replayed_update_after_restart_keeps_remote_images(self, remote, cache, product_draft):
        sync = ProductSynchronizer(remote, cache)
        added = sync.add_product(product_draft)
        remote.failing = True
        sync.update_product(added.id, {**product_draft, "price": 599.0})

        remote.failing = False
        assert ProductSynchronizer(remote, cache).outbox.drain().sent == 1

        stored = remote.kv[f"product:{added.id}"]
        assert stored["price"] == 599.0
        assert stored["images"] == product_draft["images"]

    def test_reload_keeps_products_still_queued(self, remote, cache, product_factory):
        sync = ProductSynchronizer(remote, cache)
        kept = sync.add_product(product_factory(title="Kept"))
        gone = sync.add_product(product_factory(title="Gone"))
        remote.errors[("POST", "/products")] = ServerError("/products", 503, "busy")
        queued = sync.add_product(product_factory(title="Queued"))
        sync.delete_product(gone.id)

        reloaded = ProductSynchronizer(remote, cache)
        outcome = reloaded.load()

        assert outcome.source is LoadSource.REMOTE
        assert [p.id for p in reloaded.products] == [queued.id, kept.id]
        assert [p["id"] for p in read_json(cache, PRODUCTS_META_KEY)] == [queued.id, kept.id]
