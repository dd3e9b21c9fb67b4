"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Database connectivity (SELECT 1)
    • Redis connectivity (PING) — pre-incident buffer
    • SMS provider configured (Twilio)
    • Email provider configured (Mailgun)
    • Background alert jobs in flight

Aggregation:
    any UNHEALTHY → UNHEALTHY
    any DEGRADED  → DEGRADED      (alerts still flow via console fallback)
    otherwise     → HEALTHY
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from guardpulse.app.core.config import settings
from guardpulse.app.core.redis_client import ping_redis
from guardpulse.app.db.session import ping_database

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


# Track application start time
_start_time = time.monotonic()


async def check_database(engine: Optional[Any]) -> ComponentHealth:
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    if await ping_database(engine):
        comp.message = "Connection pool available"
    else:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = "Database unreachable"
    comp.details = {"url": settings.DATABASE_URL.split("@")[-1]}
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis(client: Optional[Any]) -> ComponentHealth:
    # The buffer is advisory; incidents and alerts still work without it
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if await ping_redis(client):
        comp.message = "Pre-incident buffer available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Redis unreachable; incidents will carry no pre-incident data"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


def check_sms_provider(configured: bool) -> ComponentHealth:
    comp = ComponentHealth(name="sms")
    if configured:
        comp.message = "Twilio configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "SMS not configured; alerts fall back to console"
    return comp


def check_email_provider(configured: bool) -> ComponentHealth:
    comp = ComponentHealth(name="email")
    if configured:
        comp.message = "Mailgun configured"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Email not configured; incident emails disabled"
    return comp


def check_background_jobs(task_runner: Optional[Any]) -> ComponentHealth:
    comp = ComponentHealth(name="background_jobs")
    comp.details = {"pending": task_runner.pending if task_runner is not None else 0}
    return comp


async def run_health_check(
    *,
    engine: Optional[Any] = None,
    redis: Optional[Any] = None,
    sms_configured: bool = False,
    email_configured: bool = False,
    task_runner: Optional[Any] = None,
) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    db_health, redis_health = await asyncio.gather(
        check_database(engine),
        check_redis(redis),
    )
    report.components = [
        db_health,
        redis_health,
        check_sms_provider(sms_configured),
        check_email_provider(email_configured),
        check_background_jobs(task_runner),
    ]

    # Aggregate status
    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    return report
