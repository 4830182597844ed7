"""
Google OAuth Service for per-agent Google Calendar access.
Handles consent URL generation, code exchange, refresh, revocation and
profile lookup against Google's OAuth 2.0 endpoints.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx

from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_OAUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]

REQUEST_TIMEOUT = 10  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2  # 2, 4 seconds
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
DEFAULT_EXPIRES_IN = 3600  # Google omits expires_in only in unusual responses


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        response_data: dict | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}
        self.status_code = status_code

    @property
    def is_grant_rejection(self) -> bool:
        """
        Google refused the grant itself: a 4xx carrying an OAuth error body.

        429, 5xx, unparseable bodies and network failures are transient.
        """
        if self.error_code == "invalid_grant":
            return True
        if not self.response_data or self.status_code is None:
            return False
        return 400 <= self.status_code < 500 and self.status_code != 429


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
        self.scope = data.get("scope", "")
        self.expires_at = datetime.now(UTC) + timedelta(seconds=self.expires_in)

    def is_valid(self) -> bool:
        return bool(self.access_token and self.token_type)

    def has_calendar_access(self) -> bool:
        return "auth/calendar" in self.scope


class GoogleUserInfo:
    """Subset of the Google profile shown on the connection status."""

    def __init__(self, data: dict):
        self.email = data.get("email")
        self.name = data.get("name")


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 operations.

    Configuration is validated on first use so the application can start
    without Google credentials when the calendar feature is not used.
    """

    def __init__(self):
        self._config_validated = False

    @property
    def client_id(self) -> str | None:
        return settings.GOOGLE_CLIENT_ID

    @property
    def client_secret(self) -> str | None:
        return settings.GOOGLE_CLIENT_SECRET

    @property
    def redirect_uri(self) -> str:
        return settings.google_redirect_uri()

    def _ensure_config_validated(self) -> None:
        if self._config_validated:
            return
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured", error_code="not_configured")
        if not self.client_secret:
            raise GoogleOAuthError(
                "GOOGLE_CLIENT_SECRET not configured", error_code="not_configured"
            )
        logger.info(
            "Google OAuth service configured",
            client_id_preview=self.client_id[:12] + "...",
            redirect_uri=self.redirect_uri,
            scopes=len(CALENDAR_SCOPES),
        )
        self._config_validated = True

    async def _request_with_retry(
        self, method: str, url: str, operation: str, **kwargs
    ) -> httpx.Response:
        """
        Perform a request with retry/backoff on transient statuses and network errors.
        """
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
            for attempt in range(1, MAX_RETRIES + 1):
                try:
                    response = await client.request(method, url, **kwargs)

                    if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                        wait_time = BACKOFF_FACTOR**attempt
                        logger.warning(
                            "Google OAuth transient status",
                            operation=operation,
                            status_code=response.status_code,
                            attempt=attempt,
                            wait_time=wait_time,
                        )
                        await asyncio.sleep(wait_time)
                        continue

                    return response

                except httpx.RequestError as exc:
                    if attempt == MAX_RETRIES:
                        raise

                    wait_time = BACKOFF_FACTOR**attempt
                    logger.warning(
                        "Google OAuth request error, retrying",
                        operation=operation,
                        attempt=attempt,
                        wait_time=wait_time,
                        error=str(exc),
                        error_type=type(exc).__name__,
                    )
                    await asyncio.sleep(wait_time)

        raise GoogleOAuthError(f"{operation} failed: retries exhausted")

    def generate_oauth_url(self, state: str) -> str:
        """Build the consent URL; offline access and a forced prompt yield a refresh token."""
        self._ensure_config_validated()
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(CALENDAR_SCOPES),
            "response_type": "code",
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
        }
        oauth_url = f"{GOOGLE_OAUTH_BASE_URL}?{urlencode(params)}"
        logger.info("OAuth URL generated", state_preview=state[:8] + "...")
        return oauth_url

    async def exchange_code_for_tokens(self, authorization_code: str) -> TokenResponse:
        """
        Exchange authorization code for access and refresh tokens.

        Raises:
            GoogleOAuthError: If token exchange fails
        """
        self._ensure_config_validated()
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": authorization_code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }
        logger.info("Exchanging authorization code", code_preview=authorization_code[:12] + "...")

        try:
            response = await self._request_with_retry(
                "POST", GOOGLE_TOKEN_URL, "code_exchange", data=data
            )
        except httpx.RequestError as e:
            logger.error("Network error during token exchange", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(
                f"Network error during token exchange: {e}", error_code="network_error"
            ) from e

        return self._handle_token_response(response, "code_exchange")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Google usually omits refresh_token on refresh; the existing one is kept.

        Raises:
            GoogleOAuthError: If token refresh fails
        """
        self._ensure_config_validated()
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        logger.info("Refreshing access token", refresh_token_preview=refresh_token[:12] + "...")

        try:
            response = await self._request_with_retry(
                "POST", GOOGLE_TOKEN_URL, "token_refresh", data=data
            )
        except httpx.RequestError as e:
            logger.error("Network error during token refresh", error=str(e), error_type=type(e).__name__)
            raise GoogleOAuthError(
                f"Network error during token refresh: {e}", error_code="network_error"
            ) from e

        token_response = self._handle_token_response(response, "token_refresh")
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token
        return token_response

    async def revoke_token(self, token: str) -> bool:
        """Revoke an access or refresh token. Never raises."""
        try:
            response = await self._request_with_retry(
                "POST", GOOGLE_REVOKE_URL, "token_revocation", data={"token": token}
            )
        except (httpx.RequestError, GoogleOAuthError) as e:
            logger.error("Error during token revocation", token_preview=token[:12] + "...", error=str(e))
            return False

        success = response.status_code == 200
        if success:
            logger.info("Google token revoked")
        else:
            logger.warning(
                "Token revocation failed",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
        return success

    async def get_user_info(self, access_token: str) -> GoogleUserInfo:
        """
        Fetch the Google profile for the account that granted consent.

        Raises:
            GoogleOAuthError: If the profile cannot be read
        """
        try:
            response = await self._request_with_retry(
                "GET",
                GOOGLE_USERINFO_URL,
                "userinfo",
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.RequestError as e:
            raise GoogleOAuthError(
                f"Network error fetching user info: {e}", error_code="network_error"
            ) from e

        if not response.is_success:
            logger.error("Google userinfo failed", status_code=response.status_code)
            raise GoogleOAuthError(
                f"Failed to fetch Google profile (HTTP {response.status_code})",
                error_code="userinfo_failed",
            )

        info = GoogleUserInfo(response.json())
        if not info.email:
            raise GoogleOAuthError("Google profile has no email", error_code="userinfo_failed")
        return info

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Validate a token endpoint response.

        Raises:
            GoogleOAuthError: If response is invalid or contains errors
        """
        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Google {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})",
                    status_code=response.status_code,
                ) from None

            error_code = error_data.get("error", "unknown_error")
            logger.error(
                f"Google {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_data.get("error_description"),
            )
            raise GoogleOAuthError(
                self._map_google_error(error_code),
                error_code=error_code,
                response_data=error_data,
                status_code=response.status_code,
            )

        try:
            token_response = TokenResponse(response.json())
        except ValueError as e:
            raise GoogleOAuthError(
                f"Failed to parse Google response: {e}", status_code=response.status_code
            ) from e

        if not token_response.is_valid():
            raise GoogleOAuthError("Invalid token response from Google", status_code=response.status_code)

        logger.info(
            f"Google {operation} successful",
            expires_in=token_response.expires_in,
            has_refresh_token=bool(token_response.refresh_token),
            has_calendar_access=token_response.has_calendar_access(),
        )
        return token_response

    def _map_google_error(self, error_code: str) -> str:
        error_messages = {
            "access_denied": "Calendar access was denied. Please connect again and grant the requested permissions.",
            "invalid_grant": "Calendar authorization expired or was revoked. Please reconnect Google Calendar.",
            "invalid_client": "Calendar connection configuration error. Please contact support.",
            "invalid_request": "Invalid calendar connection request. Please try again.",
            "unauthorized_client": "Calendar connection not authorized. Please contact support.",
            "invalid_scope": "Invalid calendar permissions requested. Please contact support.",
        }
        return error_messages.get(
            error_code, f"Calendar connection failed ({error_code}). Please try again."
        )


google_oauth_service = GoogleOAuthService()


def generate_google_oauth_url(state: str) -> str:
    return google_oauth_service.generate_oauth_url(state)


async def exchange_oauth_code(authorization_code: str) -> TokenResponse:
    return await google_oauth_service.exchange_code_for_tokens(authorization_code)


async def refresh_google_token(refresh_token: str) -> TokenResponse:
    return await google_oauth_service.refresh_access_token(refresh_token)


async def revoke_google_token(token: str) -> bool:
    return await google_oauth_service.revoke_token(token)


async def fetch_google_user_info(access_token: str) -> GoogleUserInfo:
    return await google_oauth_service.get_user_info(access_token)
