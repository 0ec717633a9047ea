"""Runtime configuration.

Values resolve in this order: explicit ``config.set()`` overrides, then
``BOOKBINDER_<KEY>`` environment variables, then the defaults below.
Access either with ``config.get("KEY", default)`` or as ``config.KEY``.
"""

import os
from threading import Lock
from typing import Any, Dict

from bookbinder.config import env
from bookbinder.core.logger import setup_logger

logger = setup_logger(__name__)

DEFAULTS: Dict[str, Any] = {
    "CHUNK_SIZE": 8192,                 # Bytes per read from files and HTTP streams
    "REQUEST_TIMEOUT_CONNECT": 5.0,     # Seconds
    "REQUEST_TIMEOUT_READ": 10.0,       # Seconds
    "MAX_RETRY": 3,                     # Attempts to open an HTTP transfer
    "SHOW_DOWNLOAD_PROGRESS": True,     # tqdm bar for HTTP transfers
    "PAGE_CONSTRUCTION_CONCURRENCY": 0,  # Max concurrent page builds (0 = unlimited)
}


def _coerce(raw: str, default: Any) -> Any:
    """Convert an environment string to the type of its default."""
    if isinstance(default, bool):
        return env.string_to_bool(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return raw


class Config:
    """Settings lookup with environment overrides."""

    def __init__(self, defaults: Dict[str, Any]):
        self._defaults = dict(defaults)
        self._overrides: Dict[str, Any] = {}
        self._lock = Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key in self._overrides:
                return self._overrides[key]

        fallback = self._defaults.get(key, default)
        raw = os.getenv(f"{env.SETTINGS_ENV_PREFIX}{key}")
        if raw is None:
            return fallback
        try:
            return _coerce(raw, fallback)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {env.SETTINGS_ENV_PREFIX}{key}: {raw!r}")
            return fallback

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._overrides[key] = value

    def reset(self, key: str | None = None) -> None:
        """Drop one runtime override, or all of them."""
        with self._lock:
            if key is None:
                self._overrides.clear()
            else:
                self._overrides.pop(key, None)

    def __getattr__(self, key: str) -> Any:
        if key.startswith("_"):
            raise AttributeError(key)
        if key not in self._defaults:
            raise AttributeError(f"Unknown setting: {key}")
        return self.get(key)


config = Config(DEFAULTS)
