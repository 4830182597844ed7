# leadflow/models/domain/agent_domain.py
"""
Agent and Lead Domain Models
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class Agent(BaseModel):
    """A human agent that can receive leads."""

    key: str  # email, unique within a tenant
    display_name: str | None = None
    role: str = "agent"
    is_online: bool = False
    is_verified: bool = False
    status: Literal["active", "inactive"] = "inactive"
    last_heartbeat: datetime | None = None

    def is_eligible(self) -> bool:
        """Online and verified agents can receive new leads."""
        return self.is_online and self.is_verified

    def is_stale(self, cutoff: datetime) -> bool:
        """Check if an online agent's heartbeat is missing or older than cutoff."""
        if not self.is_online:
            return False
        return self.last_heartbeat is None or self.last_heartbeat < cutoff


class Lead(BaseModel):
    """An incoming sales lead."""

    id: str
    name: str | None = None
    email: str | None = None
    assigned_to: str | None = None
    assigned_at: datetime | None = None
    created_at: datetime | None = None

    def is_unassigned(self) -> bool:
        return not self.assigned_to
