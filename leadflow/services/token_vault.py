"""
Token Vault for per-agent Google Calendar credentials.

Lifecycle: disconnected -> connected (valid) -> near expiry -> refreshing ->
connected again, or disconnected when Google rejects the refresh token.
Tokens are encrypted at rest and only decrypted in this module.
"""

from datetime import UTC, datetime

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.oauth_domain import (
    AccessGrant,
    ConnectionStatus,
    OAuthStatePayload,
    TokenRecord,
)
from leadflow.repositories.tenant_store import TenantStore
from leadflow.services.google_oauth_service import (
    GoogleOAuthError,
    exchange_oauth_code,
    fetch_google_user_info,
    generate_google_oauth_url,
    refresh_google_token,
    revoke_google_token,
)
from leadflow.services.infrastructure.encryption_service import (
    EncryptionError,
    decrypt_oauth_tokens,
    encrypt_oauth_tokens,
)
from leadflow.services.oauth_state_service import oauth_state_service

logger = get_logger(__name__)


class TokenVaultError(Exception):
    """Custom exception for token vault operations."""

    def __init__(self, message: str, agent_key: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.agent_key = agent_key
        self.recoverable = recoverable


class NoRefreshTokenError(TokenVaultError):
    """Google issued no refresh token and none was stored; consent must be forced again."""


class TokenVault:
    """Stores, refreshes and revokes agents' calendar tokens."""

    def __init__(self, buffer_minutes: int | None = None, clock=None):
        self.buffer_minutes = (
            buffer_minutes if buffer_minutes is not None else settings.TOKEN_REFRESH_BUFFER_MINUTES
        )
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _load(self, store: TenantStore, agent_key: str) -> TokenRecord | None:
        row = await store.get_calendar_token(agent_key)
        if not row:
            return None

        try:
            access_token, refresh_token = decrypt_oauth_tokens(
                row["access_token"], row["refresh_token"]
            )
        except EncryptionError as e:
            # Unreadable ciphertext (e.g. rotated key) is as good as no connection
            logger.error("Stored calendar tokens unreadable", agent_key=agent_key, error=str(e))
            await store.delete_calendar_token(agent_key)
            return None

        return TokenRecord(
            agent_key=agent_key,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=row["expires_at"],
            provider_email=row["provider_email"],
            provider_name=row.get("provider_name"),
            connected_at=row["connected_at"],
        )

    async def _persist(self, store: TenantStore, record: TokenRecord) -> None:
        encrypted_access, encrypted_refresh = encrypt_oauth_tokens(
            record.access_token, record.refresh_token
        )
        await store.save_calendar_token(
            agent_key=record.agent_key,
            access_token=encrypted_access,
            refresh_token=encrypted_refresh,
            expires_at=record.expires_at,
            provider_email=record.provider_email,
            provider_name=record.provider_name,
            connected_at=record.connected_at,
        )

    async def build_consent_url(self, payload: OAuthStatePayload) -> str:
        """Issue a state handle for the payload and return Google's consent URL."""
        state = await oauth_state_service.issue(payload)
        return generate_google_oauth_url(state)

    async def connect(self, store: TenantStore, agent_key: str, auth_code: str) -> TokenRecord:
        """
        Exchange an authorization code and persist the agent's tokens.

        Raises:
            NoRefreshTokenError: Google sent no refresh token and none is stored
            GoogleOAuthError: Code exchange or profile lookup failed
        """
        token_response = await exchange_oauth_code(auth_code)
        existing = await self._load(store, agent_key)

        refresh_token = token_response.refresh_token or (
            existing.refresh_token if existing else None
        )
        if not refresh_token:
            logger.warning("No refresh token available after code exchange", agent_key=agent_key)
            raise NoRefreshTokenError(
                "Google did not issue a refresh token; reconnect and approve consent again",
                agent_key=agent_key,
                recoverable=False,
            )

        profile = await fetch_google_user_info(token_response.access_token)
        now = self.clock()

        record = TokenRecord(
            agent_key=agent_key,
            access_token=token_response.access_token,
            refresh_token=refresh_token,
            expires_at=token_response.expires_at,
            provider_email=profile.email,
            provider_name=profile.name,
            connected_at=existing.connected_at if existing else now,
        )
        await self._persist(store, record)

        logger.info(
            "Google Calendar connected",
            agent_key=agent_key,
            provider_email=profile.email,
            reused_refresh_token=not token_response.refresh_token,
            expires_at=record.expires_at.isoformat(),
        )
        return record

    async def get_valid_access_token(self, store: TenantStore, agent_key: str) -> AccessGrant | None:
        """
        Return a usable access token, refreshing when it is within the buffer of expiry.

        Returns None when the agent is not connected, including after Google
        rejects the refresh token (the record is deleted in that case).
        """
        record = await self._load(store, agent_key)
        if record is None:
            return None

        now = self.clock()
        if not record.needs_refresh(self.buffer_minutes, now):
            return AccessGrant(access_token=record.access_token, provider_email=record.provider_email)

        try:
            token_response = await refresh_google_token(record.refresh_token)
        except GoogleOAuthError as e:
            if not e.is_grant_rejection:
                logger.warning(
                    "Token refresh unavailable, leaving connection intact",
                    agent_key=agent_key,
                    error=str(e),
                    error_code=e.error_code,
                    status_code=e.status_code,
                )
                return None

            logger.warning(
                "Token refresh rejected, disconnecting calendar",
                agent_key=agent_key,
                error=str(e),
                error_code=e.error_code,
                status_code=e.status_code,
            )
            await store.delete_calendar_token(agent_key)
            return None

        refreshed = record.model_copy(
            update={
                "access_token": token_response.access_token,
                "refresh_token": token_response.refresh_token or record.refresh_token,
                "expires_at": token_response.expires_at,
            }
        )
        await self._persist(store, refreshed)

        logger.info(
            "Access token refreshed",
            agent_key=agent_key,
            expires_at=refreshed.expires_at.isoformat(),
        )
        return AccessGrant(
            access_token=refreshed.access_token, provider_email=refreshed.provider_email
        )

    async def disconnect(self, store: TenantStore, agent_key: str, revoke: bool = True) -> bool:
        """Revoke at Google (best effort) and delete the stored record."""
        record = await self._load(store, agent_key)
        if record is None:
            return False

        if revoke:
            revoked = await revoke_google_token(record.refresh_token)
            if not revoked:
                logger.warning("Token revocation failed, deleting locally", agent_key=agent_key)

        deleted = await store.delete_calendar_token(agent_key)
        logger.info("Google Calendar disconnected", agent_key=agent_key, revoked=revoke)
        return deleted

    async def connection_status(self, store: TenantStore, agent_key: str) -> ConnectionStatus:
        record = await self._load(store, agent_key)
        if record is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(
            connected=True,
            provider_email=record.provider_email,
            provider_name=record.provider_name,
            connected_at=record.connected_at,
            expires_at=record.expires_at,
        )


token_vault = TokenVault()
