from urllib.parse import parse_qs

import httpx
import pytest

from leadflow.config import settings
from leadflow.services.google_oauth_service import (
    CALENDAR_SCOPES,
    GOOGLE_REVOKE_URL,
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    GoogleOAuthError,
    GoogleOAuthService,
)


@pytest.fixture
def oauth_service(monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", "client-id-1234567890")
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(settings, "GOOGLE_REDIRECT_URI", "https://api.acme.test/calendar/callback")
    return GoogleOAuthService()


@pytest.fixture
def no_backoff(monkeypatch):
    async def instant(seconds):
        return None

    monkeypatch.setattr("leadflow.services.google_oauth_service.asyncio.sleep", instant)


def test_consent_url_requests_offline_calendar_access(oauth_service):
    url = oauth_service.generate_oauth_url("state-abc")

    query = parse_qs(url.split("?", 1)[1])
    assert query["scope"] == [" ".join(CALENDAR_SCOPES)]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["state"] == ["state-abc"]
    assert query["redirect_uri"] == ["https://api.acme.test/calendar/callback"]


def test_missing_client_id_is_not_configured(monkeypatch):
    monkeypatch.setattr(settings, "GOOGLE_CLIENT_ID", None)

    with pytest.raises(GoogleOAuthError) as exc:
        GoogleOAuthService().generate_oauth_url("state")
    assert exc.value.error_code == "not_configured"


@pytest.mark.asyncio
async def test_exchange_code_success(httpx_mock, oauth_service):
    httpx_mock.add_response(
        method="POST",
        url=GOOGLE_TOKEN_URL,
        json={
            "access_token": "ya29.access",
            "refresh_token": "1//refresh",
            "expires_in": 3599,
            "token_type": "Bearer",
            "scope": " ".join(CALENDAR_SCOPES),
        },
    )

    tokens = await oauth_service.exchange_code_for_tokens("4/auth-code")

    assert tokens.access_token == "ya29.access"
    assert tokens.refresh_token == "1//refresh"
    assert tokens.has_calendar_access() is True
    form = parse_qs(httpx_mock.get_request().content.decode())
    assert form["grant_type"] == ["authorization_code"]
    assert form["code"] == ["4/auth-code"]


@pytest.mark.asyncio
async def test_exchange_code_invalid_grant(httpx_mock, oauth_service):
    httpx_mock.add_response(
        method="POST",
        url=GOOGLE_TOKEN_URL,
        status_code=400,
        json={"error": "invalid_grant", "error_description": "Bad Request"},
    )

    with pytest.raises(GoogleOAuthError) as exc:
        await oauth_service.exchange_code_for_tokens("4/expired")

    assert exc.value.error_code == "invalid_grant"


@pytest.mark.asyncio
async def test_refresh_keeps_existing_refresh_token(httpx_mock, oauth_service):
    httpx_mock.add_response(
        method="POST", url=GOOGLE_TOKEN_URL, json={"access_token": "ya29.new", "expires_in": 3600}
    )

    tokens = await oauth_service.refresh_access_token("1//refresh")

    assert tokens.access_token == "ya29.new"
    assert tokens.refresh_token == "1//refresh"


@pytest.mark.asyncio
async def test_refresh_network_failure_is_flagged(httpx_mock, oauth_service, no_backoff):
    for _ in range(3):
        httpx_mock.add_exception(httpx.ConnectTimeout("timed out"))

    with pytest.raises(GoogleOAuthError) as exc:
        await oauth_service.refresh_access_token("1//refresh")

    assert exc.value.error_code == "network_error"


@pytest.mark.asyncio
async def test_revoke_never_raises(httpx_mock, oauth_service):
    httpx_mock.add_response(method="POST", url=GOOGLE_REVOKE_URL, status_code=400, json={"error": "invalid_token"})

    assert await oauth_service.revoke_token("1//refresh") is False


@pytest.mark.asyncio
async def test_user_info(httpx_mock, oauth_service):
    httpx_mock.add_response(
        method="GET", url=GOOGLE_USERINFO_URL, json={"email": "alice@gmail.com", "name": "Alice"}
    )

    info = await oauth_service.get_user_info("ya29.access")

    assert info.email == "alice@gmail.com"
    assert httpx_mock.get_request().headers["Authorization"] == "Bearer ya29.access"
