"""Startup cache hygiene: evict oversized and non-essential entries."""

import json
import logging
from dataclasses import dataclass, field

from .local_cache import (
    ADMIN_SESSION_KEY,
    LEGACY_PRODUCTS_KEY,
    OUTBOX_KEY,
    PRODUCTS_META_KEY,
    SETTINGS_KEY,
    USER_KEY,
    LocalCache,
    footprint,
    read_json,
)

logger = logging.getLogger(__name__)

# A legacy product list this large still embeds image payloads
LEGACY_ENTRY_LIMIT = 100_000
# Close to the ~5MB platform ceiling
FOOTPRINT_LIMIT = 4 * 1024 * 1024

ESSENTIAL_KEYS = (
    PRODUCTS_META_KEY,
    SETTINGS_KEY,
    USER_KEY,
    ADMIN_SESSION_KEY,
    OUTBOX_KEY,
)


@dataclass
class HygieneReport:
    removed: list[str] = field(default_factory=list)
    emergency: bool = False
    failed: bool = False


def run_cache_hygiene(cache: LocalCache) -> HygieneReport:
    """
    Inspect the local cache and evict what threatens its capacity.

    Never raises: every failure is logged and startup proceeds.
    """
    report = HygieneReport()
    try:
        _evict(cache, report)
    except Exception as e:
        logger.warning("Error cleaning local cache, removing legacy products: %s", e)
        try:
            cache.remove(LEGACY_PRODUCTS_KEY)
            report.removed.append(LEGACY_PRODUCTS_KEY)
        except Exception as e:
            logger.error("Critical cache error, attempting emergency cleanup: %s", e)
            report.emergency = True
            report.failed = not _emergency_reset(cache)
    return report


def _evict(cache: LocalCache, report: HygieneReport) -> None:
    legacy = read_json(cache, LEGACY_PRODUCTS_KEY)
    if legacy is not None and len(json.dumps(legacy)) > LEGACY_ENTRY_LIMIT:
        logger.info("Removing legacy product list with embedded images")
        cache.remove(LEGACY_PRODUCTS_KEY)
        report.removed.append(LEGACY_PRODUCTS_KEY)

    total = footprint(cache)
    if total <= FOOTPRINT_LIMIT:
        return

    logger.warning("Local cache nearly full (%d chars), keeping essentials only", total)
    for key in cache.keys():
        if key not in ESSENTIAL_KEYS:
            cache.remove(key)
            report.removed.append(key)


def _emergency_reset(cache: LocalCache) -> bool:
    """Clear everything, restoring the essential entries. Returns False if the clear failed."""
    saved: dict[str, str] = {}
    for key in ESSENTIAL_KEYS:
        try:
            value = cache.get(key)
        except Exception as e:
            logger.warning("Could not save %s before reset: %s", key, e)
            continue
        if value is not None:
            saved[key] = value

    try:
        cache.clear()
    except Exception as e:
        logger.error("Emergency cleanup failed: %s", e)
        return False

    for key, value in saved.items():
        try:
            cache.set(key, value)
        except Exception as e:
            logger.warning("Could not restore %s after reset: %s", key, e)
    return True
