"""
pre_incident.py — Per-ward ring buffer of recent samples, backed by Redis.

While a ward's live session is active the device streams location and
sensor samples. The last minute of each is kept so that, when an incident
is created, the record can show what happened right before it.

═══════════════════════════════════════════════════════════════════════════
STORAGE LAYOUT
═══════════════════════════════════════════════════════════════════════════

    location:{ward_id}   LIST   newest first, ≤ 60 JSON entries, TTL 600 s
    sensor:{ward_id}     LIST   newest first, ≤ 60 JSON entries, TTL 600 s

    append:   MULTI  LPUSH key entry
                     LTRIM key 0 59
                     EXPIRE key 600
              EXEC

    snapshot: LRANGE location:{id} 0 -1  ┐ concurrently
              LRANGE sensor:{id}   0 -1  ┘ → reversed to oldest first

Redis executes the MULTI block atomically, so concurrent appends for the
same ward need no locking here.

The buffer is advisory context. Nothing in this module raises: write
failures are logged and dropped, read failures yield an empty snapshot.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guardpulse.app.alerts.models import BufferSnapshot
from guardpulse.app.core.config import settings

logger = logging.getLogger(__name__)

LOCATION_PREFIX = "location"
SENSOR_PREFIX = "sensor"


def _key(prefix: str, ward_id: str) -> str:
    return f"{prefix}:{ward_id}"


def _decode(raw_entries: List[Any], key: str) -> List[Dict[str, Any]]:
    """Parse JSON entries (newest first) into dicts, oldest first."""
    samples: List[Dict[str, Any]] = []
    for raw in reversed(raw_entries or []):
        try:
            sample = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("Skipping undecodable buffer entry in %s", key)
            continue
        if isinstance(sample, dict):
            samples.append(sample)
    return samples


class PreIncidentBuffer:
    """
    Ring buffer over a ``redis.asyncio`` client.

    Parameters
    ----------
    redis : redis.asyncio.Redis
        Client created with ``decode_responses=True``.
    max_entries : int
        Samples kept per list (default ``BUFFER_MAX_ENTRIES``).
    ttl_seconds : int
        Expiry refreshed on every append (default ``BUFFER_TTL_SECONDS``).
    """

    def __init__(
        self,
        redis: Any,
        *,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self._redis = redis
        self.max_entries = max_entries or settings.BUFFER_MAX_ENTRIES
        self.ttl_seconds = ttl_seconds or settings.BUFFER_TTL_SECONDS

    # ── Writes ──

    async def buffer_location(self, ward_id: str, sample: Dict[str, Any]) -> None:
        await self._append(_key(LOCATION_PREFIX, ward_id), sample)

    async def buffer_sensor(self, ward_id: str, sample: Dict[str, Any]) -> None:
        await self._append(_key(SENSOR_PREFIX, ward_id), sample)

    async def _append(self, key: str, sample: Dict[str, Any]) -> None:
        entry = {**sample, "timestamp": datetime.now(timezone.utc).isoformat()}
        try:
            payload = json.dumps(entry, default=str)
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lpush(key, payload)
                pipe.ltrim(key, 0, self.max_entries - 1)
                pipe.expire(key, self.ttl_seconds)
                await pipe.execute()
        except Exception as e:
            logger.error("Failed to buffer sample for %s: %s", key, e)

    async def clear_buffer(self, ward_id: str) -> None:
        try:
            await self._redis.delete(
                _key(LOCATION_PREFIX, ward_id),
                _key(SENSOR_PREFIX, ward_id),
            )
            logger.debug("Cleared pre-incident buffer for ward %s", ward_id)
        except Exception as e:
            logger.error("Failed to clear buffer for ward %s: %s", ward_id, e)

    # ── Reads ──

    async def snapshot_pre_incident_data(self, ward_id: str) -> BufferSnapshot:
        """
        Both sample lists for ``ward_id``, oldest first.

        Returns an empty snapshot (stamped now) when the keys have expired
        or Redis is unreachable.
        """
        location_key = _key(LOCATION_PREFIX, ward_id)
        sensor_key = _key(SENSOR_PREFIX, ward_id)
        try:
            location_raw, sensor_raw = await asyncio.gather(
                self._redis.lrange(location_key, 0, -1),
                self._redis.lrange(sensor_key, 0, -1),
            )
        except Exception as e:
            logger.error("Failed to read pre-incident buffer for ward %s: %s", ward_id, e)
            return BufferSnapshot()

        snapshot = BufferSnapshot(
            location_data=_decode(location_raw, location_key),
            sensor_data=_decode(sensor_raw, sensor_key),
        )
        logger.debug(
            "Pre-incident snapshot for ward %s: %d location, %d sensor samples",
            ward_id, len(snapshot.location_data), len(snapshot.sensor_data),
        )
        return snapshot
