"""
Runtime configuration — read-through cache over DB-backed key/value rows.

Environment settings (``config.py``) are fixed for the process lifetime.
Operational knobs such as fall-detection thresholds or the SMS kill switch
live in the ``app_config`` table instead, so they can change without a
deploy. This module caches those rows in a dict and reloads them when the
cache is older than the TTL.

    ┌────────────┐  get_number()   ┌──────────────┐  loader()  ┌────────────┐
    │  caller    │ ──────────────► │ RuntimeConfig│ ─────────► │ app_config │
    └────────────┘                 │  (dict, ts)  │  if stale  └────────────┘
                                   └──────────────┘

A failed reload keeps the previous values until the next TTL window.
Concurrent readers of a stale cache share a single reload.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)

ConfigLoader = Callable[[], Awaitable[Dict[str, str]]]

_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


class RuntimeConfig:
    """
    TTL-refreshed key/value cache with typed getters.

    Parameters
    ----------
    loader : async callable
        Returns every active config row as ``{key: value}``.
    ttl_seconds : float
        Maximum cache age before the next read reloads.
    clock : callable
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        loader: ConfigLoader,
        *,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = settings.RUNTIME_CONFIG_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._values: Dict[str, str] = {}
        self._last_refresh: Optional[float] = None
        self._refresh_lock = asyncio.Lock()

    def _is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return (self._clock() - self._last_refresh) > self._ttl

    async def refresh(self) -> None:
        """Reload all values; keeps the previous map on failure."""
        try:
            values = await self._loader()
        except Exception as e:
            logger.error("Runtime config reload failed, keeping %d cached values: %s",
                         len(self._values), e)
            # retry after the next TTL window
            self._last_refresh = self._clock()
            return
        self._values = dict(values)
        self._last_refresh = self._clock()
        logger.info("Loaded %d runtime config values", len(self._values))

    async def get(self, key: str) -> Optional[str]:
        if self._is_stale():
            async with self._refresh_lock:
                # another caller may have reloaded while we waited
                if self._is_stale():
                    await self.refresh()
        value = self._values.get(key)
        return value if value else None

    async def get_number(self, key: str, default: float = 0.0) -> float:
        value = await self.get(key)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            logger.warning(
                "Config value for '%s' is not a valid number: %s. Using default: %s",
                key, value, default,
            )
            return default

    async def get_bool(self, key: str, default: bool = False) -> bool:
        value = await self.get(key)
        if value is None:
            return default
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        logger.warning(
            "Config value for '%s' is not a valid boolean: %s. Using default: %s",
            key, value, default,
        )
        return default

    def stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self._values),
            "ttl_seconds": self._ttl,
            "is_stale": self._is_stale(),
        }


def static_runtime_config(values: Optional[Dict[str, str]] = None) -> RuntimeConfig:
    """RuntimeConfig over a fixed dict (no database)."""
    fixed = dict(values or {})

    async def _loader() -> Dict[str, str]:
        return fixed

    return RuntimeConfig(_loader, ttl_seconds=float("inf"))
