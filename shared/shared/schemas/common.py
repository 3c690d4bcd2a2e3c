"""Common schemas used across services."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Standard health check response."""

    status: str = "ok"


class StatusResponse(BaseModel):
    """Scheduler status summary for the admin surface."""

    online: bool = True
    reminders: int = 0
    active: int = 0
    inactive: int = 0
    armed: int = 0
