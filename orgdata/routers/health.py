"""Health check endpoints for production monitoring."""

from __future__ import annotations

import time
from typing import Callable

from fastapi import APIRouter, Request

from orgdata.schemas.health import HealthResponse, ServiceHealth

router = APIRouter(tags=["health"])


def _probe(name: str, check_fn: Callable[[], None]) -> ServiceHealth:
    """Time `check_fn`; any exception marks the dependency unhealthy."""
    start = time.monotonic()
    status, details = "healthy", None
    try:
        check_fn()
    except Exception as exc:
        status, details = "unhealthy", str(exc)[:200]
    latency_ms = round((time.monotonic() - start) * 1000, 2)
    return ServiceHealth(service=name, status=status, latency_ms=latency_ms, details=details)


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request) -> HealthResponse:
    """Is the application running?"""
    settings = request.app.state.settings
    return HealthResponse(
        status="healthy",
        version=settings.app_version,
        environment=settings.environment,
        services=[ServiceHealth(service="app", status="healthy", latency_ms=0.0)],
    )


@router.get("/health/ready", response_model=HealthResponse)
def readiness_check(request: Request) -> HealthResponse:
    """Can the store be queried, and does it hold any organisations?

    An empty but reachable store is reported as degraded.
    """
    settings = request.app.state.settings
    service = request.app.state.service

    data = None
    if service is None:
        database = ServiceHealth(service="database", status="unhealthy", details="not initialised")
    else:
        database = _probe("database", service.ping)
    if database.status == "healthy":
        data = service.data_status()

    if database.status != "healthy":
        overall = "unhealthy"
    elif data is None or data.organisations == 0:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        version=settings.app_version,
        environment=settings.environment,
        services=[database],
        data=data,
    )


@router.get("/health/live")
def liveness_check() -> dict[str, str]:
    """Liveness probe: is the process alive?"""
    return {"status": "alive"}
