"""Process configuration, read from STORESYNC_* environment variables."""

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .local_cache import DEFAULT_CAPACITY
from .remote_client import REQUEST_TIMEOUT, RETRY_BACKOFF

# Can be overridden via STORESYNC_DATA_DIR environment variable
_default_data_dir = Path(__file__).parent.parent.parent / "data"
DEFAULT_API_URL = "http://127.0.0.1:8000"
CACHE_FILE = "local_cache.json"
KV_DIR = "kv"


@dataclass
class AppConfig:
    api_url: str = DEFAULT_API_URL
    api_key: str | None = None
    timeout: float = REQUEST_TIMEOUT
    retry_backoff: float = RETRY_BACKOFF
    cache_file: Path = _default_data_dir / CACHE_FILE
    cache_capacity: int = DEFAULT_CAPACITY
    data_dir: Path = _default_data_dir / KV_DIR
    admin_secret: str = ""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """
        Build the configuration from the environment.

        Raises:
            ValueError: If a numeric variable does not parse.
        """
        env = os.environ if environ is None else environ
        base_dir = Path(env.get("STORESYNC_DATA_DIR", _default_data_dir))
        return cls(
            api_url=env.get("STORESYNC_API_URL", DEFAULT_API_URL),
            api_key=env.get("STORESYNC_API_KEY") or None,
            timeout=float(env.get("STORESYNC_TIMEOUT", REQUEST_TIMEOUT)),
            retry_backoff=float(env.get("STORESYNC_RETRY_BACKOFF", RETRY_BACKOFF)),
            cache_file=Path(env.get("STORESYNC_CACHE_FILE", base_dir / CACHE_FILE)),
            cache_capacity=int(env.get("STORESYNC_CACHE_CAPACITY", DEFAULT_CAPACITY)),
            data_dir=base_dir / KV_DIR,
            admin_secret=env.get("STORESYNC_ADMIN_SECRET", ""),
        )
