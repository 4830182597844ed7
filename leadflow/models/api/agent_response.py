# leadflow/models/api/agent_response.py
"""
Agent availability API response models.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from leadflow.models.domain.agent_domain import Agent


class OnlineAgent(BaseModel):
    key: str
    display_name: str | None = None
    is_verified: bool
    last_heartbeat: datetime | None = None
    eligible: bool = Field(..., description="Will receive leads on the next in-window pass")
    stale: bool = Field(..., description="Heartbeat is past the cutoff; the next sweep marks it offline")

    @classmethod
    def from_agent(cls, agent: Agent, cutoff: datetime) -> "OnlineAgent":
        return cls(
            key=agent.key,
            display_name=agent.display_name,
            is_verified=agent.is_verified,
            last_heartbeat=agent.last_heartbeat,
            eligible=agent.is_eligible() and not agent.is_stale(cutoff),
            stale=agent.is_stale(cutoff),
        )


class OnlineAgentsResponse(BaseModel):
    agents: list[OnlineAgent]
    eligible_count: int
    stale_cutoff: datetime
