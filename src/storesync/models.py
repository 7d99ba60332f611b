"""Data models for storesync.

Every record converts to and from the camelCase wire shape used by the
Remote Store and the local cache. ``from_dict`` is the single place where
legacy or alternate shapes are normalized; anything it cannot make sense
of raises InvalidRecordError.
"""

import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .errors import InvalidRecordError


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


_id_lock = threading.Lock()
_last_id = 0


def _generate_id() -> str:
    """Return a millisecond-timestamp ID, strictly increasing within the process."""
    global _last_id
    with _id_lock:
        candidate = time.time_ns() // 1_000_000
        if candidate <= _last_id:
            candidate = _last_id + 1
        _last_id = candidate
        return str(candidate)


# --- Field helpers ---


def _as_mapping(data: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidRecordError(kind, f"expected an object, got {type(data).__name__}")
    return data


def _require_str(data: Mapping[str, Any], key: str, kind: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InvalidRecordError(kind, f"'{key}' must be a non-empty string")
    return value


def _opt_str(data: Mapping[str, Any], key: str, default: str = "") -> str:
    value = data.get(key)
    if value is None:
        return default
    return str(value)


def _number(
    data: Mapping[str, Any],
    key: str,
    kind: str,
    default: float | None = None,
    minimum: float | None = None,
    positive: bool = False,
) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRecordError(kind, f"'{key}' must be a number")
    if positive and value <= 0:
        raise InvalidRecordError(kind, f"'{key}' must be positive")
    if minimum is not None and value < minimum:
        raise InvalidRecordError(kind, f"'{key}' must be >= {minimum:g}")
    return value


def _count(data: Mapping[str, Any], key: str, kind: str, default: int = 0) -> int:
    value = _number(data, key, kind, default=default, minimum=0)
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidRecordError(kind, f"'{key}' must be a whole number")
        value = int(value)
    return value


def _str_list(data: Mapping[str, Any], key: str, kind: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise InvalidRecordError(kind, f"'{key}' must be a list of strings")
    return list(value)


def _valid_images(value: Any) -> list[str]:
    """Keep only usable encoded image payloads."""
    if not isinstance(value, (list, tuple)):
        return []
    return [img for img in value if isinstance(img, str) and img]


# --- Products ---


# Product fields that survive into the trimmed cache projection
PRODUCT_METADATA_FIELDS = (
    "id",
    "brand",
    "title",
    "price",
    "originalPrice",
    "category",
    "sizes",
    "colors",
    "sku",
    "barcode",
    "totalStock",
    "createdAt",
)


@dataclass
class Product:
    """A catalog product. Images are self-contained encoded payloads, not URLs."""

    id: str
    brand: str
    title: str
    price: float
    category: str
    original_price: float | None = None
    sizes: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    image: str = ""
    images: list[str] = field(default_factory=list)
    sku: str = ""
    barcode: str = ""
    total_stock: int = 0
    created_at: str = field(default_factory=_utc_now)
    # Set when the record came without image data (metadata listing or cache)
    has_images: bool | None = None

    @property
    def carries_images(self) -> bool:
        """Whether the product has images, even if they were not loaded."""
        return bool(self.images) or bool(self.has_images)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "brand": self.brand,
            "title": self.title,
            "price": self.price,
            "originalPrice": self.original_price,
            "category": self.category,
            "sizes": list(self.sizes),
            "colors": list(self.colors),
            "image": self.image,
            "images": list(self.images),
            "sku": self.sku,
            "barcode": self.barcode,
            "totalStock": self.total_stock,
            "createdAt": self.created_at,
        }
        if self.has_images is not None:
            result["hasImages"] = self.has_images
        return result

    def to_metadata(self) -> dict[str, Any]:
        """Trimmed projection for the local cache: never carries image data."""
        full = self.to_dict()
        result = {key: full[key] for key in PRODUCT_METADATA_FIELDS}
        result["hasImages"] = self.carries_images
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Product":
        """Parse a full record, a metadata-only record, or a trimmed cache record."""
        data = _as_mapping(data, "product")
        original_price = data.get("originalPrice")
        if original_price is not None:
            original_price = _number(data, "originalPrice", "product", minimum=0)

        image = data.get("image")
        has_images = data.get("hasImages")
        return cls(
            id=_require_str(data, "id", "product"),
            brand=_opt_str(data, "brand"),
            title=_require_str(data, "title", "product"),
            price=_number(data, "price", "product", positive=True),
            original_price=original_price,
            category=_opt_str(data, "category"),
            sizes=_str_list(data, "sizes", "product"),
            colors=_str_list(data, "colors", "product"),
            image=image if isinstance(image, str) else "",
            images=_valid_images(data.get("images")),
            sku=_opt_str(data, "sku"),
            barcode=_opt_str(data, "barcode"),
            total_stock=_count(data, "totalStock", "product"),
            created_at=_opt_str(data, "createdAt"),
            has_images=has_images if isinstance(has_images, bool) else None,
        )

    @classmethod
    def from_metadata(cls, data: Any) -> "Product":
        """Rebuild a placeholder product from its trimmed cache projection."""
        product = cls.from_dict(data)
        return replace(
            product, image="", images=[], has_images=bool(product.has_images)
        )

    @classmethod
    def create(cls, draft: Mapping[str, Any]) -> "Product":
        """Create a new product from an ID-less draft."""
        data = dict(_as_mapping(draft, "product"))
        data["id"] = _generate_id()
        if not data.get("createdAt"):
            data["createdAt"] = _utc_now()
        return cls.from_dict(data)


# --- Orders ---


class OrderStatus(str, Enum):
    """Order lifecycle status. Admins may overwrite it freely."""

    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        try:
            return cls(value)
        except ValueError:
            raise InvalidRecordError("order status", f"unknown status {value!r}") from None


@dataclass
class OrderItem:
    """Snapshot of one purchased line, frozen at checkout time."""

    product_id: str
    title: str
    brand: str
    size: str
    quantity: int
    price: float
    image: str = ""

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "productId": self.product_id,
            "title": self.title,
            "brand": self.brand,
            "image": self.image,
            "size": self.size,
            "quantity": self.quantity,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "OrderItem":
        data = _as_mapping(data, "order item")
        quantity = _count(data, "quantity", "order item")
        if quantity < 1:
            raise InvalidRecordError("order item", "'quantity' must be at least 1")
        image = data.get("image")
        return cls(
            product_id=_require_str(data, "productId", "order item"),
            title=_opt_str(data, "title"),
            brand=_opt_str(data, "brand"),
            size=_opt_str(data, "size"),
            quantity=quantity,
            price=_number(data, "price", "order item", minimum=0),
            image=image if isinstance(image, str) else "",
        )


@dataclass
class ShippingAddress:
    """Postal address snapshot attached to an order."""

    first_name: str = ""
    last_name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    phone: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "country": self.country,
            "phone": self.phone,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ShippingAddress":
        data = _as_mapping(data, "shipping address")
        return cls(
            first_name=_opt_str(data, "firstName"),
            last_name=_opt_str(data, "lastName"),
            street=_opt_str(data, "street"),
            city=_opt_str(data, "city"),
            state=_opt_str(data, "state"),
            zip_code=_opt_str(data, "zipCode"),
            country=_opt_str(data, "country"),
            phone=_opt_str(data, "phone"),
        )


@dataclass
class CustomerInfo:
    """Contact details captured at checkout."""

    name: str = ""
    email: str = ""
    phone: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email, "phone": self.phone}

    @classmethod
    def from_dict(cls, data: Any) -> "CustomerInfo":
        data = _as_mapping(data, "customer info")
        return cls(
            name=_opt_str(data, "name"),
            email=_opt_str(data, "email"),
            phone=_opt_str(data, "phone"),
        )


@dataclass
class Order:
    """A placed order. Totals are computed once at creation."""

    id: str
    items: list[OrderItem]
    subtotal: float
    shipping: float
    tax: float
    total: float
    shipping_address: ShippingAddress
    payment_method: str
    status: OrderStatus = OrderStatus.PENDING
    date: str = field(default_factory=_utc_now)
    created_at: str = field(default_factory=_utc_now)
    tracking_number: str | None = None
    customer_info: CustomerInfo | None = None
    user_email: str | None = None

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "date": self.date,
            "status": self.status.value,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "tax": self.tax,
            "total": self.total,
            "shippingAddress": self.shipping_address.to_dict(),
            "paymentMethod": self.payment_method,
            "createdAt": self.created_at,
        }
        if self.tracking_number is not None:
            result["trackingNumber"] = self.tracking_number
        if self.customer_info is not None:
            result["customerInfo"] = self.customer_info.to_dict()
        if self.user_email is not None:
            result["userEmail"] = self.user_email
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "Order":
        data = _as_mapping(data, "order")
        items = data.get("items")
        if not isinstance(items, list):
            raise InvalidRecordError("order", "'items' must be a list")
        customer_info = None
        if data.get("customerInfo") is not None:
            customer_info = CustomerInfo.from_dict(data["customerInfo"])
        tracking = data.get("trackingNumber")
        user_email = data.get("userEmail")
        return cls(
            id=_require_str(data, "id", "order"),
            items=[OrderItem.from_dict(item) for item in items],
            subtotal=_number(data, "subtotal", "order", minimum=0),
            shipping=_number(data, "shipping", "order", minimum=0),
            tax=_number(data, "tax", "order", minimum=0),
            total=_number(data, "total", "order", minimum=0),
            shipping_address=ShippingAddress.from_dict(data.get("shippingAddress") or {}),
            payment_method=_opt_str(data, "paymentMethod"),
            status=OrderStatus.parse(data.get("status", "pending")),
            date=_opt_str(data, "date"),
            created_at=_opt_str(data, "createdAt"),
            tracking_number=str(tracking) if tracking is not None else None,
            customer_info=customer_info,
            user_email=str(user_email) if user_email else None,
        )

    def summary(self) -> "OrderSummary":
        return OrderSummary(
            id=self.id,
            date=self.date,
            status=self.status,
            total=self.total,
            item_count=self.item_count,
            tracking_number=self.tracking_number,
        )


@dataclass
class OrderSummary:
    """Row of a customer's order history, as shown on the account page."""

    id: str
    date: str
    status: OrderStatus
    total: float
    item_count: int
    tracking_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "date": self.date,
            "status": self.status.value,
            "total": self.total,
            "itemCount": self.item_count,
        }
        if self.tracking_number is not None:
            result["trackingNumber"] = self.tracking_number
        return result

    @classmethod
    def from_dict(cls, data: Any) -> "OrderSummary":
        data = _as_mapping(data, "order summary")
        tracking = data.get("trackingNumber")
        return cls(
            id=_require_str(data, "id", "order summary"),
            date=_opt_str(data, "date"),
            status=OrderStatus.parse(data.get("status", "pending")),
            total=_number(data, "total", "order summary", minimum=0),
            item_count=_count(data, "itemCount", "order summary"),
            tracking_number=str(tracking) if tracking is not None else None,
        )


# --- Users ---


@dataclass
class User:
    """A storefront customer, keyed by email."""

    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    joined_date: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "joinedDate": self.joined_date,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "User":
        data = _as_mapping(data, "user")
        first_name = _opt_str(data, "firstName")
        last_name = _opt_str(data, "lastName")
        # Legacy records carry a single display name
        if not first_name and not last_name and data.get("name"):
            first_name, _, last_name = str(data["name"]).strip().partition(" ")
        return cls(
            id=_opt_str(data, "id") or _generate_id(),
            email=_require_str(data, "email", "user"),
            first_name=first_name,
            last_name=last_name.strip(),
            phone=_opt_str(data, "phone"),
            joined_date=_opt_str(data, "joinedDate") or _utc_now(),
        )

    @classmethod
    def create(cls, email: str, first_name: str = "", last_name: str = "") -> "User":
        """Create a new user with generated ID and join date."""
        return cls(
            id=_generate_id(),
            email=email,
            first_name=first_name,
            last_name=last_name,
            joined_date=_utc_now(),
        )


ADDRESS_TYPES = ("shipping", "billing")


@dataclass
class Address:
    """A saved postal address on a user account."""

    id: str
    type: str = "shipping"
    first_name: str = ""
    last_name: str = ""
    street: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    country: str = ""
    phone: str = ""
    is_default: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zipCode": self.zip_code,
            "country": self.country,
            "phone": self.phone,
            "isDefault": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Address":
        data = _as_mapping(data, "address")
        address_type = data.get("type", "shipping")
        if address_type not in ADDRESS_TYPES:
            raise InvalidRecordError("address", f"unknown address type {address_type!r}")
        return cls(
            id=_require_str(data, "id", "address"),
            type=address_type,
            first_name=_opt_str(data, "firstName"),
            last_name=_opt_str(data, "lastName"),
            street=_opt_str(data, "street"),
            city=_opt_str(data, "city"),
            state=_opt_str(data, "state"),
            zip_code=_opt_str(data, "zipCode"),
            country=_opt_str(data, "country"),
            phone=_opt_str(data, "phone"),
            is_default=bool(data.get("isDefault", False)),
        )


@dataclass
class UserAccount:
    """A user together with the sub-collections saved alongside it remotely."""

    user: User
    addresses: list[Address] = field(default_factory=list)
    wishlist: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Bundled shape sent to POST /users: user fields plus sub-collections."""
        payload = self.user.to_dict()
        payload["addresses"] = [a.to_dict() for a in self.addresses]
        payload["wishlist"] = list(self.wishlist)
        return payload

    @classmethod
    def from_payload(cls, data: Any) -> "UserAccount":
        """
        Parse any known account shape.

        Accepts the bundled remote shape, a nested
        ``{"user": ..., "addresses": ..., "wishlist": ...}`` shape, and
        legacy user records with a single ``name`` field.
        """
        data = _as_mapping(data, "user account")
        if isinstance(data.get("user"), Mapping):
            user_data = data["user"]
        elif "email" in data:
            user_data = data
        else:
            raise InvalidRecordError("user account", "no user record or email found")

        addresses = data.get("addresses") or []
        if not isinstance(addresses, list):
            raise InvalidRecordError("user account", "'addresses' must be a list")
        wishlist = _str_list(data, "wishlist", "user account")
        return cls(
            user=User.from_dict(user_data),
            addresses=[Address.from_dict(a) for a in addresses],
            wishlist=list(dict.fromkeys(wishlist)),
        )


# --- Settings ---


CURRENCY_SYMBOLS = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
}


@dataclass
class Notifications:
    """Admin notification toggles."""

    new_orders: bool = True
    low_stock: bool = True
    daily_sales: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "newOrders": self.new_orders,
            "lowStock": self.low_stock,
            "dailySales": self.daily_sales,
        }


def _default_categories() -> list[str]:
    return ["T-shirts", "Jeans", "Jackets", "Shoes", "Accessories"]


def _default_sizes() -> list[str]:
    return ["XS", "S", "M", "L", "XL", "XXL"]


def _default_colors() -> list[str]:
    return ["Black", "White", "Blue", "Red", "Gray", "Navy", "Pink", "Green"]


# Wire key -> attribute name
_SETTINGS_KEYS = {
    "storeName": "store_name",
    "storeEmail": "store_email",
    "storePhone": "store_phone",
    "storeAddress": "store_address",
    "storeCity": "store_city",
    "storeState": "store_state",
    "storePincode": "store_pincode",
    "currency": "currency",
    "currencySymbol": "currency_symbol",
    "taxRate": "tax_rate",
    "shippingFee": "shipping_fee",
    "freeShippingThreshold": "free_shipping_threshold",
    "lowStockThreshold": "low_stock_threshold",
    "notifications": "notifications",
    "categories": "categories",
    "sizes": "sizes",
    "colors": "colors",
    "priceRangeMin": "price_range_min",
    "priceRangeMax": "price_range_max",
}
_NOTIFICATION_KEYS = {
    "newOrders": "new_orders",
    "lowStock": "low_stock",
    "dailySales": "daily_sales",
}
_TEXT_SETTINGS = {
    "store_name", "store_email", "store_phone", "store_address",
    "store_city", "store_state", "store_pincode", "currency_symbol",
}
_LIST_SETTINGS = {"categories", "sizes", "colors"}
_NUMBER_SETTINGS = {
    "tax_rate", "shipping_fee", "free_shipping_threshold",
    "price_range_min", "price_range_max",
}


def _attr_name(key: str, table: Mapping[str, str]) -> str | None:
    if key in table:
        return table[key]
    if key in table.values():
        return key
    return None


@dataclass
class StoreSettings:
    """The single store-wide settings record. Field defaults are the built-in defaults."""

    store_name: str = "Urban Wear Retail"
    store_email: str = "contact@urbanwear.com"
    store_phone: str = "+91 98765 43210"
    store_address: str = "123 Fashion Street"
    store_city: str = "Mumbai"
    store_state: str = "Maharashtra"
    store_pincode: str = "400001"
    currency: str = "INR"
    currency_symbol: str = CURRENCY_SYMBOLS["INR"]
    tax_rate: float = 18
    shipping_fee: float = 50
    free_shipping_threshold: float = 999
    low_stock_threshold: int = 10
    notifications: Notifications = field(default_factory=Notifications)
    categories: list[str] = field(default_factory=_default_categories)
    sizes: list[str] = field(default_factory=_default_sizes)
    colors: list[str] = field(default_factory=_default_colors)
    price_range_min: float = 500
    price_range_max: float = 10000

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for wire_key, attr in _SETTINGS_KEYS.items():
            value = getattr(self, attr)
            if isinstance(value, Notifications):
                value = value.to_dict()
            elif isinstance(value, list):
                value = list(value)
            result[wire_key] = value
        return result

    def merged(self, partial: Any, strict: bool = True) -> "StoreSettings":
        """
        Return a copy with ``partial`` applied on top.

        Keys may be camelCase (wire) or snake_case. Unknown keys raise
        InvalidRecordError when ``strict``, and are ignored otherwise.
        A changed ``currency`` recomputes ``currency_symbol``.
        """
        partial = _as_mapping(partial, "settings")
        changes: dict[str, Any] = {}
        for key, value in partial.items():
            attr = _attr_name(key, _SETTINGS_KEYS)
            if attr is None:
                if strict:
                    raise InvalidRecordError("settings", f"unknown setting '{key}'")
                continue
            changes[attr] = self._coerce(attr, value)

        if "currency" in changes:
            changes["currency_symbol"] = CURRENCY_SYMBOLS[changes["currency"]]
        return replace(self, **changes)

    def _coerce(self, attr: str, value: Any) -> Any:
        if attr == "currency":
            if value not in CURRENCY_SYMBOLS:
                raise InvalidRecordError("settings", f"unsupported currency {value!r}")
            return value
        if attr in _TEXT_SETTINGS:
            if not isinstance(value, str):
                raise InvalidRecordError("settings", f"'{attr}' must be a string")
            return value
        if attr in _LIST_SETTINGS:
            return _str_list({attr: value}, attr, "settings")
        if attr in _NUMBER_SETTINGS:
            return _number({attr: value}, attr, "settings", minimum=0)
        if attr == "low_stock_threshold":
            return _count({attr: value}, attr, "settings")
        # notifications: partial toggles merge over the current ones
        value = _as_mapping(value, "notifications")
        toggles: dict[str, bool] = {}
        for key, flag in value.items():
            name = _attr_name(key, _NOTIFICATION_KEYS)
            if name is None:
                raise InvalidRecordError("settings", f"unknown notification '{key}'")
            toggles[name] = bool(flag)
        return replace(self.notifications, **toggles)

    @classmethod
    def from_dict(cls, data: Any) -> "StoreSettings":
        """Parse a stored record merged over the defaults, ignoring unknown keys."""
        return cls().merged(data, strict=False)
