# leadflow/models/domain/tenant_domain.py
"""
Tenant Domain Models
Tenant registry entries, per-tenant assignment settings and the rotation cursor.
"""

from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class Tenant(BaseModel):
    """An isolated customer workspace with its own schema."""

    id: str
    name: str
    schema_name: str
    status: Literal["active", "inactive"] = "active"

    def is_active(self) -> bool:
        return self.status == "active"


class AssignmentCursor(BaseModel):
    """Where round-robin distribution left off in the previous pass."""

    last_index: int = -1
    last_agent_key: str | None = None
    last_assigned_at: datetime | None = None


class TenantConfig(BaseModel):
    """Per-tenant assignment window, liveness threshold and rotation cursor."""

    tenant_id: str
    window_start_hour: int = Field(..., ge=0, le=23)
    window_end_hour: int = Field(..., ge=1, le=24)
    stale_threshold_minutes: int = Field(..., ge=1, le=120)
    inactivity_minutes: int = Field(..., ge=1, le=120)
    cursor: AssignmentCursor = Field(default_factory=AssignmentCursor)
    is_default: bool = False

    @model_validator(mode="after")
    def _check_window(self) -> "TenantConfig":
        if self.window_start_hour >= self.window_end_hour:
            raise ValueError("window_start_hour must be less than window_end_hour")
        return self

    def in_window(self, hour: int) -> bool:
        """Check if a local hour falls inside [window_start_hour, window_end_hour)."""
        return self.window_start_hour <= hour < self.window_end_hour

    def stale_cutoff(self, now: datetime) -> datetime:
        """Heartbeats older than this instant are stale."""
        return now - timedelta(minutes=self.stale_threshold_minutes)
