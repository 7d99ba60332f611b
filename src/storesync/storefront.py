"""Composition root: wires every synchronizer to one client, cache and outbox."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import requests

from .admin import AdminGate
from .auth import AuthSynchronizer, CredentialVerifier
from .cart import Cart
from .config import AppConfig
from .errors import CacheUnavailableError
from .hygiene import HygieneReport, run_cache_hygiene
from .local_cache import FileCache, LocalCache, MemoryCache
from .migration import DataMigration
from .models import CustomerInfo, Order, Product, ShippingAddress, StoreSettings, UserAccount
from .orders import OrderSynchronizer
from .outbox import DrainResult, Outbox, RemoteCaller
from .products import ProductSynchronizer
from .remote_client import RemoteStoreClient
from .store_settings import SettingsSynchronizer
from .synchronizer import LoadOutcome

logger = logging.getLogger(__name__)


@dataclass
class StartupReport:
    hygiene: HygieneReport
    settings: LoadOutcome[StoreSettings]
    auth: LoadOutcome[UserAccount | None]
    products: LoadOutcome[list[Product]]
    orders: LoadOutcome[list[Order]]
    outbox: DrainResult | None = None


class Storefront:
    """One storefront session."""

    def __init__(
        self,
        client: RemoteCaller,
        cache: LocalCache,
        admin_secret: str = "",
        verifier: CredentialVerifier | None = None,
        allow_implicit_signup: bool = True,
    ):
        self.client = client
        self.cache = cache
        self.outbox = Outbox(client, cache)
        self.settings = SettingsSynchronizer(client, cache, self.outbox)
        self.orders = OrderSynchronizer(
            client, cache, lambda: self.settings.settings, self.outbox
        )
        self.products = ProductSynchronizer(client, cache, self.outbox)
        self.auth = AuthSynchronizer(
            client,
            cache,
            self.orders,
            self.outbox,
            verifier=verifier,
            allow_implicit_signup=allow_implicit_signup,
        )
        self.cart = Cart(cache)
        self.admin = AdminGate(cache, admin_secret)
        self.migration = DataMigration(client, cache)

    @classmethod
    def from_config(
        cls, config: AppConfig, session: requests.Session | None = None
    ) -> "Storefront":
        client = RemoteStoreClient(
            config.api_url,
            api_key=config.api_key,
            timeout=config.timeout,
            retry_backoff=config.retry_backoff,
            session=session,
        )
        try:
            cache: LocalCache = FileCache(config.cache_file, config.cache_capacity)
        except CacheUnavailableError as e:
            logger.error("Local cache file unusable, running in memory: %s", e)
            cache = MemoryCache(config.cache_capacity)
        return cls(client, cache, admin_secret=config.admin_secret)

    def start(self) -> StartupReport:
        """
        Run cache hygiene, deliver queued writes, then load every synchronizer.

        Writes that are still queued after the drain are laid over the
        remote snapshots, so nothing done offline is lost on reload. Never
        blocks on failures.
        """
        hygiene = run_cache_hygiene(self.cache)
        self.cart.reload()
        drained = None
        if self.outbox.pending:
            drained = self.outbox.drain()
            logger.info(
                "Delivered %d queued operation(s), %d still pending",
                drained.sent, drained.remaining,
            )
        report = StartupReport(
            hygiene=hygiene,
            settings=self.settings.load(),
            auth=self.auth.load(),
            products=self.products.load(),
            orders=self.orders.load(),
            outbox=drained,
        )
        # Auth loaded before the order store did
        self.auth.refresh_orders()
        return report

    def checkout(
        self,
        shipping_address: ShippingAddress | Mapping[str, Any],
        payment_method: str,
        customer_info: CustomerInfo | Mapping[str, Any] | None = None,
    ) -> Order:
        """
        Turn the cart into a pending order and empty the cart.

        Without explicit customer info, the signed-in user's details are used.

        Raises:
            InvalidRecordError: If the cart is empty or an input is malformed.
        """
        if customer_info is None and self.auth.user is not None:
            user = self.auth.user
            customer_info = CustomerInfo(
                name=f"{user.first_name} {user.last_name}".strip(),
                email=user.email,
                phone=user.phone,
            )
        order = self.orders.create_order(
            self.cart.to_order_items(), shipping_address, payment_method, customer_info
        )
        self.cart.clear()
        self.auth.refresh_orders()
        return order
