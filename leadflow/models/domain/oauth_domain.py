# leadflow/models/domain/oauth_domain.py
"""
OAuth Token Domain Models for per-agent Google Calendar connections.
"""

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel


class TokenRecord(BaseModel):
    """Domain model for an agent's stored Google tokens (decrypted)."""

    agent_key: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    provider_email: str
    provider_name: str | None = None
    connected_at: datetime

    def needs_refresh(self, buffer_minutes: int = 5, now: datetime | None = None) -> bool:
        """Check if the access token is expired or expires within the buffer."""
        buffer_time = (now or datetime.now(UTC)) + timedelta(minutes=buffer_minutes)
        return buffer_time >= self.expires_at


class AccessGrant(BaseModel):
    """A usable access token together with the Google account it belongs to."""

    access_token: str
    provider_email: str


class OAuthStatePayload(BaseModel):
    """Who started a consent flow and where to send them afterwards."""

    tenant_id: str
    agent_key: str
    role: str = "agent"
    return_path: str = "/"


class ConnectionStatus(BaseModel):
    """Calendar connection summary shown to the agent."""

    connected: bool
    provider_email: str | None = None
    provider_name: str | None = None
    connected_at: datetime | None = None
    expires_at: datetime | None = None
