# leadflow/models/api/assignment_request.py
"""
Assignment API request/response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ReassignLeadRequest(BaseModel):
    """Admin override of a lead's owner."""

    agent_key: str = Field(..., min_length=1, max_length=320)

    @field_validator("agent_key")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("agent_key must not be blank")
        return value


class ReassignLeadResponse(BaseModel):
    lead_id: str
    assigned_to: str
    assigned_at: datetime
    previous_agent_key: str | None = None
