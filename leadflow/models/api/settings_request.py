# leadflow/models/api/settings_request.py
"""
Tenant settings API models.
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator


class AssignmentSettingsRequest(BaseModel):
    """Admin update of the assignment window and liveness thresholds."""

    window_start_hour: int = Field(..., ge=0, le=23, description="First hour leads are assigned")
    window_end_hour: int = Field(..., ge=1, le=24, description="Hour assignment stops (exclusive)")
    stale_threshold_minutes: int = Field(
        ..., ge=1, le=120, description="Minutes without a heartbeat before an agent goes offline"
    )
    inactivity_minutes: int = Field(
        ..., ge=1, le=120, description="Client idle time before automatic logout"
    )

    @model_validator(mode="after")
    def _check_window(self):
        if self.window_start_hour >= self.window_end_hour:
            raise ValueError("window_start_hour must be less than window_end_hour")
        return self


class AssignmentSettingsResponse(BaseModel):
    window_start_hour: int
    window_end_hour: int
    stale_threshold_minutes: int
    inactivity_minutes: int
    time_zone: str
    is_default: bool = Field(False, description="True when stored settings could not be read")
    cursor_last_agent_key: str | None = None
    cursor_last_assigned_at: datetime | None = None


class InactivitySettingsResponse(BaseModel):
    inactivity_minutes: int
    is_default: bool = False
