"""Shopping cart, persisted in a light format without image payloads."""

import logging
from dataclasses import dataclass
from typing import Any

from .errors import CacheUnavailableError, InvalidRecordError
from .local_cache import CART_KEY, LocalCache, read_json, write_json
from .models import OrderItem, Product

logger = logging.getLogger(__name__)


@dataclass
class CartItem:
    product: Product
    size: str
    quantity: int = 1

    def to_light(self) -> dict[str, Any]:
        return {
            "productId": self.product.id,
            "brand": self.product.brand,
            "title": self.product.title,
            "price": self.product.price,
            "category": self.product.category,
            "size": self.size,
            "quantity": self.quantity,
        }

    @classmethod
    def from_light(cls, data: Any) -> "CartItem":
        """Parse a light entry, or an older entry that embeds the whole product."""
        if not isinstance(data, dict):
            raise InvalidRecordError("cart item", "expected an object")
        embedded = data.get("product")
        if isinstance(embedded, dict):
            product = Product.from_metadata(embedded)
        else:
            product = Product.from_metadata({
                "id": data.get("productId"),
                "brand": data.get("brand"),
                "title": data.get("title"),
                "price": data.get("price"),
                "category": data.get("category"),
            })
        quantity = data.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidRecordError("cart item", "'quantity' must be a positive integer")
        return cls(product=product, size=str(data.get("size") or ""), quantity=quantity)


class Cart:
    """Line items keyed by product and size."""

    def __init__(self, cache: LocalCache):
        self.cache = cache
        self.items: list[CartItem] = self._load()

    @property
    def count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def total(self) -> float:
        return sum(item.product.price * item.quantity for item in self.items)

    def add(self, product: Product, size: str) -> CartItem:
        """Add one unit; the same product and size share a line."""
        item = self._find(product.id, size)
        if item is not None:
            item.quantity += 1
        else:
            item = CartItem(product=product, size=size)
            self.items.append(item)
        self._save()
        return item

    def remove(self, product_id: str, size: str) -> None:
        self.items = [
            i for i in self.items if not (i.product.id == product_id and i.size == size)
        ]
        self._save()

    def update_quantity(self, product_id: str, size: str, quantity: int) -> None:
        """Set a line's quantity; zero or less removes the line."""
        if quantity <= 0:
            self.remove(product_id, size)
            return
        item = self._find(product_id, size)
        if item is not None:
            item.quantity = quantity
            self._save()

    def clear(self) -> None:
        self.items = []
        self._save()

    def reload(self) -> None:
        """Re-read the persisted cart, e.g. after cache hygiene evicted it."""
        self.items = self._load()

    def to_order_items(self) -> list[OrderItem]:
        """Freeze the cart into order line items at current prices."""
        return [
            OrderItem(
                product_id=i.product.id,
                title=i.product.title,
                brand=i.product.brand,
                size=i.size,
                quantity=i.quantity,
                price=i.product.price,
                image=i.product.image,
            )
            for i in self.items
        ]

    def _find(self, product_id: str, size: str) -> CartItem | None:
        for item in self.items:
            if item.product.id == product_id and item.size == size:
                return item
        return None

    def _load(self) -> list[CartItem]:
        try:
            data = read_json(self.cache, CART_KEY)
        except (CacheUnavailableError, ValueError) as e:
            logger.error("Failed to parse cart from local cache: %s", e)
            return []
        if not isinstance(data, list):
            return []

        items = []
        for entry in data:
            try:
                items.append(CartItem.from_light(entry))
            except InvalidRecordError as e:
                logger.warning("Dropping cart entry: %s", e)
        return items

    def _save(self) -> None:
        try:
            write_json(self.cache, CART_KEY, [i.to_light() for i in self.items])
        except CacheUnavailableError as e:
            logger.warning("Cart kept in memory only: %s", e)
