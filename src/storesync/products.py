"""Products synchronizer: the catalog, cached as image-free metadata."""

import logging
from collections.abc import Mapping
from typing import Any

from .errors import InvalidRecordError, ProductNotFoundError
from .local_cache import LEGACY_PRODUCTS_KEY, PRODUCTS_META_KEY, LocalCache
from .models import Product
from .outbox import Outbox, RemoteCaller
from .remote_client import (
    PRODUCTS,
    PRODUCTS_CLEANUP,
    endpoint_id,
    ensure_success,
    product_endpoint,
    products_endpoint,
)
from .synchronizer import Synchronizer, parse_collection

logger = logging.getLogger(__name__)


class ProductSynchronizer(Synchronizer[list[Product]]):
    """
    Owns the product catalog, newest first.

    Only the trimmed metadata projection (no ``image``/``images``, plus a
    ``hasImages`` flag) is ever written to the local cache, including the
    copy of a queued write kept in the outbox.
    """

    name = "products"
    cache_key = PRODUCTS_META_KEY

    def __init__(
        self,
        client: RemoteCaller,
        cache: LocalCache,
        outbox: Outbox | None = None,
        include_images: bool = False,
    ):
        """
        Args:
            include_images: Whether loads request image payloads by default.
        """
        super().__init__(client, cache, outbox)
        self.include_images = include_images
        self._products: list[Product] = []

    @property
    def products(self) -> list[Product]:
        return list(self._products)

    def get_product(self, product_id: str) -> Product:
        """
        Raises:
            ProductNotFoundError: If no product has this ID.
        """
        for product in self._products:
            if product.id == product_id:
                return product
        raise ProductNotFoundError(product_id)

    def refresh_products(self, include_images: bool | None = None):
        """Reload the catalog, optionally overriding the image mode for this load."""
        previous = self.include_images
        if include_images is not None:
            self.include_images = include_images
        try:
            return self.load()
        finally:
            self.include_images = previous

    # --- Pipeline stages ---

    def _fetch_remote(self) -> list[Product]:
        products: list[Product] = []
        while True:
            endpoint = products_endpoint(self.include_images, offset=len(products))
            payload = ensure_success(self.client.call(endpoint), endpoint)
            page = parse_collection(payload.get("products") or [], Product.from_dict, "products")
            products.extend(page)
            if not payload.get("hasMore") or not page:
                return products

    def _parse_cached(self, data: Any) -> list[Product]:
        return parse_collection(data, Product.from_metadata, "cached products")

    def _default(self) -> list[Product]:
        return []

    def _snapshot(self) -> list[dict[str, Any]]:
        return [p.to_metadata() for p in self._products]

    def _adopt(self, value: list[Product]) -> None:
        self._products = list(value)

    def _apply_pending(self, value: list[Product]) -> list[Product]:
        products = list(value)
        for op in self.outbox.pending:
            if op.endpoint == PRODUCTS_CLEANUP:
                products = []
                continue
            product_id = endpoint_id(op.endpoint, PRODUCTS)
            if op.endpoint != PRODUCTS and product_id is None:
                continue
            if op.method == "DELETE":
                products = [p for p in products if p.id != product_id]
            else:
                try:
                    pending = Product.from_dict(op.body)
                except InvalidRecordError as e:
                    logger.error("Ignoring unreadable queued product write: %s", e)
                    continue
                ids = [p.id for p in products]
                if pending.id in ids:
                    products[ids.index(pending.id)] = pending
                else:
                    products.insert(0, pending)
        return products

    # --- Mutations ---

    def add_product(self, draft: Mapping[str, Any]) -> Product:
        """
        Create a product from an ID-less draft and prepend it to the catalog.

        Raises:
            InvalidRecordError: If the draft fails validation.
        """
        product = Product.create(draft)
        self._products.insert(0, product)
        logger.info("Adding product: %s (ID %s)", product.title, product.id)
        self._propagate("POST", PRODUCTS, product.to_dict(), product.to_metadata())
        self._persist()
        return product

    def update_product(self, product_id: str, data: Mapping[str, Any]) -> Product:
        """
        Replace a product wholesale, keeping its ID.

        Raises:
            ProductNotFoundError: If no product has this ID.
            InvalidRecordError: If the replacement fails validation.
        """
        index = self._index_of(product_id)
        replacement = dict(data)
        if replacement.get("id", product_id) != product_id:
            raise InvalidRecordError("product", "cannot change a product's ID")
        replacement["id"] = product_id
        replacement.setdefault("createdAt", self._products[index].created_at)
        product = Product.from_dict(replacement)

        self._products[index] = product
        self._propagate(
            "PUT", product_endpoint(product_id), product.to_dict(), product.to_metadata()
        )
        self._persist()
        return product

    def delete_product(self, product_id: str) -> None:
        """
        Raises:
            ProductNotFoundError: If no product has this ID.
        """
        index = self._index_of(product_id)
        del self._products[index]
        self._propagate("DELETE", product_endpoint(product_id))
        self._persist()
        self._remove_cache(LEGACY_PRODUCTS_KEY)

    def cleanup_all(self) -> int:
        """Delete every product locally and remotely. Returns how many were removed."""
        removed = len(self._products)
        self._products = []
        self._propagate("POST", PRODUCTS_CLEANUP)
        self._remove_cache(PRODUCTS_META_KEY, LEGACY_PRODUCTS_KEY)
        return removed

    def _index_of(self, product_id: str) -> int:
        for i, product in enumerate(self._products):
            if product.id == product_id:
                return i
        raise ProductNotFoundError(product_id)
