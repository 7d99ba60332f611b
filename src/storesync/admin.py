"""Shared-secret gate for the admin back-office. Not a security boundary."""

import hmac
import logging

from .errors import CacheUnavailableError
from .local_cache import ADMIN_SESSION_KEY, LocalCache

logger = logging.getLogger(__name__)


class AdminGate:
    """Remembers whether the admin secret was entered in this cache's session."""

    def __init__(self, cache: LocalCache, secret: str):
        self.cache = cache
        self.secret = secret
        try:
            self.is_authenticated = cache.get(ADMIN_SESSION_KEY) == "true"
        except CacheUnavailableError as e:
            logger.warning("Could not read admin session flag: %s", e)
            self.is_authenticated = False

    def login(self, secret: str) -> bool:
        """Return True and persist the session flag if ``secret`` matches."""
        if not self.secret or not hmac.compare_digest(secret.encode(), self.secret.encode()):
            logger.warning("Rejected admin login attempt")
            return False
        self.is_authenticated = True
        try:
            self.cache.set(ADMIN_SESSION_KEY, "true")
        except CacheUnavailableError as e:
            logger.warning("Admin session will not survive a restart: %s", e)
        return True

    def logout(self) -> None:
        self.is_authenticated = False
        try:
            self.cache.remove(ADMIN_SESSION_KEY)
        except CacheUnavailableError as e:
            logger.warning("Could not clear admin session flag: %s", e)
