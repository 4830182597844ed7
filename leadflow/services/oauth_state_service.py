"""
OAuth State Service for the calendar consent flow.

The `state` query parameter sent to Google is an opaque random handle; the
payload it stands for (tenant, agent, role, return path) lives in Redis
for a limited time and is consumed exactly once by the callback.
"""

import json
import secrets

from pydantic import ValidationError

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.oauth_domain import OAuthStatePayload
from leadflow.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)

STATE_KEY_PREFIX = "oauth_state"
STATE_LENGTH = 32  # bytes


class OAuthStateError(Exception):
    """Custom exception for OAuth state-related errors."""

    pass


class OAuthStateService:
    """Issues and consumes single-use OAuth state handles."""

    def __init__(self, redis=None, ttl_seconds: int | None = None):
        self.redis = redis or fast_redis
        self.ttl_seconds = ttl_seconds or settings.OAUTH_STATE_TTL_SECONDS

    def _redis_key(self, state: str) -> str:
        return f"{STATE_KEY_PREFIX}:{state}"

    async def issue(self, payload: OAuthStatePayload) -> str:
        """
        Store the payload under a fresh handle.

        Raises:
            OAuthStateError: If Redis refuses the write
        """
        state = secrets.token_urlsafe(STATE_LENGTH)
        stored = await self.redis.set_with_ttl(
            self._redis_key(state), payload.model_dump_json(), self.ttl_seconds
        )
        if not stored:
            logger.error("Failed to store OAuth state", tenant_id=payload.tenant_id, agent_key=payload.agent_key)
            raise OAuthStateError("Failed to store OAuth state")

        logger.info(
            "OAuth state issued",
            tenant_id=payload.tenant_id,
            agent_key=payload.agent_key,
            ttl_seconds=self.ttl_seconds,
        )
        return state

    async def consume(self, state: str) -> OAuthStatePayload | None:
        """Return the payload for a handle and invalidate it; None if unknown or expired."""
        if not state:
            return None

        # Atomic read-and-remove: a handle redeems at most once
        raw = await self.redis.get_and_delete(self._redis_key(state))
        if raw is None:
            logger.warning("OAuth state not found or expired", state_preview=state[:8] + "...")
            return None

        try:
            return OAuthStatePayload(**json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.error("Malformed OAuth state payload", error=str(e))
            return None


oauth_state_service = OAuthStateService()
