"""
Health check service for LanWake.

Checks database connectivity, that the ping binary used by the prober is
available, and whether the reachability monitor is alive. Returns
structured health responses with per-component status.
"""

import logging
import shutil
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import text

from config import settings
from database import AsyncSessionLocal

from .monitor import DeviceMonitor

logger = logging.getLogger(__name__)

# Captured at module load, used to compute uptime
_start_time = time.monotonic()


class ComponentHealth(BaseModel):
    name: str
    status: str  # "ok" | "degraded" | "error"
    message: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    app: str
    version: str
    uptime_seconds: float
    checks: list[ComponentHealth]
    timestamp: str


async def check_database() -> ComponentHealth:
    """Check database connectivity by running SELECT 1."""
    start = time.perf_counter()
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="ok",
            response_time_ms=round(elapsed, 1),
        )
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="error",
            message=str(e),
            response_time_ms=round(elapsed, 1),
        )


def check_prober() -> ComponentHealth:
    """Check that the ping binary is on PATH."""
    path = shutil.which(settings.PING_BINARY)
    if path is None:
        return ComponentHealth(
            name="prober",
            status="error",
            message=f"Ping binary not found: {settings.PING_BINARY}",
        )
    return ComponentHealth(name="prober", status="ok", message=path)


def check_monitor(monitor: Optional[DeviceMonitor]) -> ComponentHealth:
    """Report whether the background monitor is running and how its last cycle went."""
    if not settings.MONITOR_ENABLED:
        return ComponentHealth(name="monitor", status="ok", message="disabled")
    if monitor is None or not monitor.running:
        return ComponentHealth(
            name="monitor",
            status="error",
            message="Monitor is not running",
        )

    last = monitor.last_run
    if last is None:
        return ComponentHealth(name="monitor", status="ok", message="waiting for first cycle")
    if last.aborted:
        return ComponentHealth(
            name="monitor",
            status="degraded",
            message="Last cycle aborted",
            response_time_ms=round(last.duration_ms, 1),
        )
    return ComponentHealth(
        name="monitor",
        status="ok",
        message=f"{last.probed} probed, {last.online} online",
        response_time_ms=round(last.duration_ms, 1),
    )


async def run_health_checks(monitor: Optional[DeviceMonitor] = None) -> HealthResponse:
    """Run all health checks and return aggregated status."""
    checks = [
        await check_database(),
        check_prober(),
        check_monitor(monitor),
    ]

    # Database is critical: if it is down, the service is unhealthy.
    # Other checks are non-critical and only degrade the status.
    critical_names = {"database"}
    has_critical_error = any(
        c.status == "error" and c.name in critical_names for c in checks
    )
    has_any_problem = any(c.status in ("error", "degraded") for c in checks)

    if has_critical_error:
        overall = "unhealthy"
    elif has_any_problem:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
