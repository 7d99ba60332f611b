"""Settings synchronizer: the single store-wide settings record."""

import logging
from collections.abc import Mapping
from typing import Any

from .errors import InvalidRecordError
from .local_cache import SETTINGS_KEY
from .models import StoreSettings
from .remote_client import SETTINGS, ensure_success
from .synchronizer import Synchronizer

logger = logging.getLogger(__name__)


class SettingsSynchronizer(Synchronizer[StoreSettings]):
    """Owns the settings record; every checkout prices with ``settings``."""

    name = "settings"
    cache_key = SETTINGS_KEY

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._settings = StoreSettings()

    @property
    def settings(self) -> StoreSettings:
        return self._settings

    @property
    def currency_symbol(self) -> str:
        return self._settings.currency_symbol

    def format_price(self, price: float) -> str:
        return f"{self._settings.currency_symbol}{price:.2f}"

    def update_settings(self, partial: Mapping[str, Any]) -> StoreSettings:
        """
        Merge ``partial`` into the current settings.

        The merged record replaces in-memory state before the remote save
        is attempted, and is written to the local cache whatever the
        remote outcome.

        Raises:
            InvalidRecordError: On unknown keys or invalid values.
        """
        updated = self._settings.merged(partial)
        self._settings = updated
        self._propagate("POST", SETTINGS, updated.to_dict())
        self._persist()
        return updated

    # --- Pipeline stages ---

    def _fetch_remote(self) -> StoreSettings | None:
        payload = ensure_success(self.client.call(SETTINGS), SETTINGS)
        remote = payload.get("settings")
        # An empty record means nothing has been saved remotely yet
        if not remote:
            return None
        return StoreSettings.from_dict(remote)

    def _parse_cached(self, data: Any) -> StoreSettings:
        return StoreSettings.from_dict(data)

    def _default(self) -> StoreSettings:
        return StoreSettings()

    def _snapshot(self) -> dict[str, Any]:
        return self._settings.to_dict()

    def _adopt(self, value: StoreSettings) -> None:
        self._settings = value

    def _apply_pending(self, value: StoreSettings) -> StoreSettings:
        for op in self.outbox.pending:
            if op.endpoint != SETTINGS:
                continue
            try:
                value = StoreSettings.from_dict(op.body)
            except InvalidRecordError as e:
                logger.error("Ignoring unreadable queued settings write: %s", e)
        return value
