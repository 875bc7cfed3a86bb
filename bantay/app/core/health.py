"""
Health check aggregation — deep health check for all subsystems.

Checks:
    • Database connectivity (round-trip SELECT 1)
    • Cache connectivity (Redis PING; optional, so failure only degrades)
    • SMS gateway configuration
    • Email transport configuration
    • Dispatch backlog (in-flight background dispatch tasks)

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness checks
    - Load balancer health checks
    - Monitoring dashboards
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bantay.app.core.cache import ping_redis
from bantay.app.core.config import settings
from bantay.app.core.database import ping_db

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


_start_time = time.monotonic()


def _strip_credentials(url: str) -> str:
    return url.split("@")[-1]


async def check_database() -> ComponentHealth:
    comp = ComponentHealth(name="database")
    start = time.monotonic()
    try:
        await ping_db()
        comp.message = "Connection OK"
        comp.details = {"url": _strip_credentials(settings.DATABASE_URL)}
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis() -> ComponentHealth:
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    if not settings.CACHE_ENABLED:
        comp.message = "Caching disabled"
        return comp
    try:
        if await ping_redis():
            comp.message = "Cache available"
        else:
            comp.status = HealthStatus.DEGRADED
            comp.message = "Cache unavailable — serving uncached"
        comp.details = {"url": _strip_credentials(settings.REDIS_URL)}
    except Exception as e:
        comp.status = HealthStatus.DEGRADED
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_sms_gateway() -> ComponentHealth:
    comp = ComponentHealth(name="sms_gateway", details={"provider": settings.SMS_PROVIDER})
    if settings.SMS_PROVIDER == "semaphore" and not settings.SEMAPHORE_API_KEY:
        comp.status = HealthStatus.DEGRADED
        comp.message = "SEMAPHORE_API_KEY not set — SMS deliveries will fail"
    elif settings.SMS_PROVIDER == "simulation":
        comp.message = "Simulation mode"
    else:
        comp.message = "Configured"
    return comp


async def check_email() -> ComponentHealth:
    comp = ComponentHealth(name="email", details={"provider": settings.EMAIL_PROVIDER})
    if settings.EMAIL_PROVIDER == "smtp" and not settings.SMTP_HOST:
        comp.status = HealthStatus.DEGRADED
        comp.message = "SMTP_HOST not set — email deliveries will fail"
    elif settings.EMAIL_PROVIDER == "simulation":
        comp.message = "Simulation mode"
    else:
        comp.message = f"SMTP {settings.SMTP_HOST}:{settings.SMTP_PORT}"
    return comp


def check_dispatch(in_flight: int) -> ComponentHealth:
    return ComponentHealth(
        name="dispatch",
        message=f"{in_flight} dispatch task(s) running",
        details={"in_flight": in_flight},
    )


async def run_health_check(dispatch_in_flight: Optional[int] = None) -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    for coro in (check_database(), check_redis(), check_sms_gateway(), check_email()):
        report.components.append(await coro)
    if dispatch_in_flight is not None:
        report.components.append(check_dispatch(dispatch_in_flight))

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check: %s", report.status.value)
    return report
