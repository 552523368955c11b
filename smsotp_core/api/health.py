"""
Health Check Module
===================
Liveness and readiness probes over the OTP store and the SMS job queue.

/health reports "degraded" when only the queue is down: verification
still works, new codes just wait for delivery.
"""

import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

from ..queue import MessageQueue
from ..storage import KeyValueStore

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def up(self) -> bool:
        return self.status == "connected"


class HealthResponse(BaseModel):
    status: HealthStatus
    service: str
    version: str
    components: Dict[str, ComponentHealth]
    timestamp: float


async def probe(name: str, ping: Callable[[], Awaitable[bool]]) -> ComponentHealth:
    """Time one ping and turn it into a component report."""
    start = time.perf_counter()
    if await ping():
        return ComponentHealth(
            status="connected",
            latency_ms=round((time.perf_counter() - start) * 1000, 2),
        )
    logger.error("Health check failed", component=name)
    return ComponentHealth(status="error", error=f"{name} unreachable")


def create_health_router(
    service_name: str,
    version: str,
    store: KeyValueStore,
    queue: MessageQueue,
) -> APIRouter:
    """
    Create a health check router.

    Returns:
        FastAPI router with /health, /health/live and /health/ready endpoints
    """
    router = APIRouter(tags=["Health"])

    async def components() -> Dict[str, ComponentHealth]:
        return {
            "store": await probe("store", store.ping),
            "queue": await probe("queue", queue.ping),
        }

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        checks = await components()
        if not checks["store"].up:
            status = HealthStatus.UNHEALTHY
        elif not checks["queue"].up:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY
        return HealthResponse(
            status=status,
            service=service_name,
            version=version,
            components=checks,
            timestamp=time.time(),
        )

    @router.get("/health/live")
    async def liveness_probe():
        """Always 200 while the process is serving."""
        return {"status": "alive"}

    @router.get("/health/ready")
    async def readiness_probe():
        checks = await components()
        down = [name for name, check in checks.items() if not check.up]
        if down:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "unavailable": down},
            )
        return {"status": "ready"}

    return router
