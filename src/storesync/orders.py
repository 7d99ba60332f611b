"""Orders synchronizer: one order store keyed by ID, with derived per-user views."""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .errors import CacheUnavailableError, InvalidRecordError, OrderNotFoundError
from .local_cache import ALL_ORDERS_KEY, LocalCache, read_json, user_orders_key
from .models import (
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    OrderSummary,
    ShippingAddress,
    StoreSettings,
    _generate_id,
    _utc_now,
)
from .outbox import Outbox, RemoteCaller
from .remote_client import ORDERS, endpoint_id, ensure_success, order_endpoint
from .synchronizer import Synchronizer, parse_collection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderTotals:
    subtotal: float
    shipping: float
    tax: float
    total: float


def compute_totals(items: Sequence[OrderItem], settings: StoreSettings) -> OrderTotals:
    """
    Price a cart with the settings in effect.

    Shipping is free only when the subtotal is strictly above the
    free-shipping threshold; tax is a percentage of the subtotal.
    """
    subtotal = sum(item.price * item.quantity for item in items)
    shipping = 0 if subtotal > settings.free_shipping_threshold else settings.shipping_fee
    tax = subtotal * settings.tax_rate / 100
    return OrderTotals(subtotal=subtotal, shipping=shipping, tax=tax, total=subtotal + shipping + tax)


class OrderSynchronizer(Synchronizer[list[Order]]):
    """
    Owns every order known to this session.

    The global order list is the source of truth. Per-user history entries
    in the local cache are derived from it on every persist, so an order
    created offline shows up in its customer's history too.
    """

    name = "orders"
    cache_key = ALL_ORDERS_KEY

    def __init__(
        self,
        client: RemoteCaller,
        cache: LocalCache,
        settings_provider: Callable[[], StoreSettings],
        outbox: Outbox | None = None,
    ):
        """
        Args:
            settings_provider: Returns the settings in effect, read at each checkout.
        """
        super().__init__(client, cache, outbox)
        self.settings_provider = settings_provider
        self._orders: dict[str, Order] = {}

    @property
    def orders(self) -> list[Order]:
        """All orders, newest first."""
        return sorted(
            self._orders.values(),
            key=lambda o: o.created_at or o.date,
            reverse=True,
        )

    def get_order(self, order_id: str) -> Order | None:
        return self._orders.get(order_id)

    def orders_for_user(self, email: str) -> list[Order]:
        return [o for o in self.orders if o.user_email == email]

    def history_for(self, email: str) -> list[OrderSummary]:
        """
        Order history for one customer.

        Combines the in-memory orders with the cached per-user entry; the
        in-memory record wins when both know an order.
        """
        summaries = {o.id: o.summary() for o in self.orders_for_user(email)}
        for cached in self._cached_history(email) or []:
            summaries.setdefault(cached.id, cached)
        return sorted(summaries.values(), key=lambda s: s.date, reverse=True)

    def has_history_for(self, email: str) -> bool:
        """Whether any order trace exists for this email."""
        if self.orders_for_user(email):
            return True
        try:
            return self.cache.get(user_orders_key(email)) is not None
        except CacheUnavailableError as e:
            logger.warning("Could not check cached order history for %s: %s", email, e)
            return False

    def _cached_history(self, email: str) -> list[OrderSummary] | None:
        try:
            data = read_json(self.cache, user_orders_key(email))
            if data is None:
                return None
            return parse_collection(data, OrderSummary.from_dict, "order history")
        except (
            CacheUnavailableError, InvalidRecordError, ValueError, KeyError, TypeError
        ) as e:
            logger.error("Error loading cached order history for %s: %s", email, e)
            return None

    # --- Pipeline stages ---

    def _fetch_remote(self) -> list[Order]:
        payload = ensure_success(self.client.call(ORDERS), ORDERS)
        return parse_collection(payload.get("orders") or [], Order.from_dict, "orders")

    def _parse_cached(self, data: Any) -> list[Order]:
        return parse_collection(data, Order.from_dict, "cached orders")

    def _default(self) -> list[Order]:
        return []

    def _snapshot(self) -> list[dict[str, Any]]:
        # Orders are cached in full; line items may carry product images
        return [o.to_dict() for o in self.orders]

    def _adopt(self, value: list[Order]) -> None:
        self._orders = {o.id: o for o in value}

    def _apply_pending(self, value: list[Order]) -> list[Order]:
        orders = {o.id: o for o in value}
        for op in self.outbox.pending:
            if op.endpoint != ORDERS and endpoint_id(op.endpoint, ORDERS) is None:
                continue
            try:
                pending = Order.from_dict(op.body)
            except InvalidRecordError as e:
                logger.error("Ignoring unreadable queued order write: %s", e)
                continue
            orders[pending.id] = pending
        return list(orders.values())

    def _persist(self) -> None:
        super()._persist()
        by_user: dict[str, list[dict[str, Any]]] = {}
        for order in self.orders:
            if order.user_email:
                by_user.setdefault(order.user_email, []).append(order.summary().to_dict())
        for email, history in by_user.items():
            self._write_cache(user_orders_key(email), history)

    # --- Mutations ---

    def create_order(
        self,
        items: Sequence[OrderItem],
        shipping_address: ShippingAddress | Mapping[str, Any],
        payment_method: str,
        customer_info: CustomerInfo | Mapping[str, Any] | None = None,
    ) -> Order:
        """
        Price and record a new pending order.

        Always returns the order, even when the Remote Store is unreachable.

        Raises:
            InvalidRecordError: If there are no items or an input is malformed.
        """
        if not items:
            raise InvalidRecordError("order", "cannot create an order with no items")
        if not isinstance(shipping_address, ShippingAddress):
            shipping_address = ShippingAddress.from_dict(shipping_address)
        if customer_info is not None and not isinstance(customer_info, CustomerInfo):
            customer_info = CustomerInfo.from_dict(customer_info)

        totals = compute_totals(items, self.settings_provider())
        now = _utc_now()
        order = Order(
            id=f"ORD-{_generate_id()}",
            items=list(items),
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            tax=totals.tax,
            total=totals.total,
            shipping_address=shipping_address,
            payment_method=payment_method,
            status=OrderStatus.PENDING,
            date=now,
            created_at=now,
            customer_info=customer_info,
            user_email=customer_info.email if customer_info and customer_info.email else None,
        )

        self._orders[order.id] = order
        logger.info("Created order %s (total %.2f)", order.id, order.total)
        self._propagate("POST", ORDERS, order.to_dict())
        self._persist()
        return order

    def update_order_status(self, order_id: str, status: OrderStatus | str) -> Order:
        """
        Overwrite an order's status. Any status may follow any other.

        Raises:
            OrderNotFoundError: If no order has this ID.
            InvalidRecordError: If the status is unknown.
        """
        status = OrderStatus.parse(status)
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)

        order.status = status
        self._propagate("PUT", order_endpoint(order_id), order.to_dict())
        self._persist()
        return order
