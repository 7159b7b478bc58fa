"""Schemas for health check endpoints."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel


class ServiceHealth(BaseModel):
    """Result of probing one dependency, such as the database."""

    service: str
    status: str
    latency_ms: float | None = None
    details: str | None = None


class DataStatus(BaseModel):
    """What the store currently holds."""

    organisations: int
    release_id: str | None = None
    release_date: date | None = None


class HealthResponse(BaseModel):
    status: str
    version: str
    environment: str
    services: list[ServiceHealth]
    data: DataStatus | None = None
