"""One-time push of pre-sync local data to the Remote Store."""

import logging
from dataclasses import dataclass

from .errors import CacheUnavailableError, InvalidRecordError
from .local_cache import (
    ALL_ORDERS_KEY,
    LEGACY_PRODUCTS_KEY,
    MIGRATED_KEY,
    SETTINGS_KEY,
    LocalCache,
    read_json,
)
from .models import Order, Product, StoreSettings
from .outbox import RemoteCaller
from .remote_client import ORDERS, PRODUCTS, SETTINGS, ensure_success

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    products: int = 0
    orders: int = 0
    settings: bool = False
    skipped_records: int = 0


class DataMigration:
    """
    Detects local data written before remote sync existed and uploads it.

    Uploads go straight to the Remote Store, not through the outbox: a
    failed migration raises and leaves the completed flag unset, so it
    can simply be run again.
    """

    def __init__(self, client: RemoteCaller, cache: LocalCache):
        self.client = client
        self.cache = cache

    @property
    def completed(self) -> bool:
        try:
            return self.cache.get(MIGRATED_KEY) == "true"
        except CacheUnavailableError as e:
            logger.warning("Could not read migration flag: %s", e)
            return False

    def pending(self) -> bool:
        """
        Whether un-migrated local data exists.

        With nothing worth migrating the completed flag is recorded
        straight away, so the check is not repeated on later startups.
        """
        if self.completed:
            return False
        if self._legacy_products() or self._legacy_orders() or self._custom_settings():
            return True
        self._mark_completed()
        return False

    def run(self) -> MigrationReport:
        """
        Upload legacy products, orders and customised settings.

        Raises:
            RemoteStoreError: On the first upload that fails.
        """
        report = MigrationReport()
        for raw in self._legacy_products():
            try:
                product = Product.from_dict(raw)
            except InvalidRecordError as e:
                logger.warning("Skipping legacy product: %s", e)
                report.skipped_records += 1
                continue
            ensure_success(self.client.call(PRODUCTS, "POST", product.to_dict()), PRODUCTS)
            report.products += 1

        for raw in self._legacy_orders():
            try:
                order = Order.from_dict(raw)
            except InvalidRecordError as e:
                logger.warning("Skipping legacy order: %s", e)
                report.skipped_records += 1
                continue
            ensure_success(self.client.call(ORDERS, "POST", order.to_dict()), ORDERS)
            report.orders += 1

        settings = self._custom_settings()
        if settings is not None:
            ensure_success(self.client.call(SETTINGS, "POST", settings.to_dict()), SETTINGS)
            report.settings = True

        self._mark_completed()
        logger.info(
            "Migrated %d product(s), %d order(s)%s",
            report.products, report.orders, " and settings" if report.settings else "",
        )
        return report

    def skip(self) -> None:
        """Record the migration as done without uploading anything."""
        self._mark_completed()

    def _mark_completed(self) -> None:
        try:
            self.cache.set(MIGRATED_KEY, "true")
        except CacheUnavailableError as e:
            logger.warning("Could not record migration flag: %s", e)

    def _read_list(self, key: str) -> list:
        try:
            data = read_json(self.cache, key)
        except (CacheUnavailableError, ValueError) as e:
            logger.error("Error reading %s for migration: %s", key, e)
            return []
        return data if isinstance(data, list) else []

    def _legacy_products(self) -> list:
        return self._read_list(LEGACY_PRODUCTS_KEY)

    def _legacy_orders(self) -> list:
        return self._read_list(ALL_ORDERS_KEY)

    def _custom_settings(self) -> StoreSettings | None:
        """Cached settings, only if the store was actually customised."""
        try:
            data = read_json(self.cache, SETTINGS_KEY)
            if data is None:
                return None
            settings = StoreSettings.from_dict(data)
        except (CacheUnavailableError, InvalidRecordError, ValueError) as e:
            logger.error("Error reading settings for migration: %s", e)
            return None
        if settings.store_name == StoreSettings().store_name:
            return None
        return settings
