"""
Calendar connection routes.

The consent flow starts from an authenticated call to /calendar/connect.
Google then redirects the browser to /calendar/callback, which carries no
bearer token: the single-use state handle identifies tenant and agent.
"""

from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import RedirectResponse

from leadflow.auth.tenant import TenantContext, get_tenant_context
from leadflow.config import settings
from leadflow.infrastructure.observability.logging import (
    bind_tenant_context,
    clear_tenant_context,
    get_logger,
)
from leadflow.models.domain.oauth_domain import ConnectionStatus, OAuthStatePayload
from leadflow.repositories.tenant_directory import tenant_directory
from leadflow.services.google_oauth_service import GoogleOAuthError
from leadflow.services.oauth_state_service import OAuthStateError, oauth_state_service
from leadflow.services.token_vault import NoRefreshTokenError, token_vault

logger = get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def is_safe_return_path(path: str) -> bool:
    """Only same-site absolute paths; rejects scheme-relative and full URLs."""
    return path.startswith("/") and not path.startswith("//") and "\\" not in path


def build_return_url(return_path: str, **params: str) -> str:
    separator = "&" if "?" in return_path else "?"
    query = "&".join(f"{key}={quote(value, safe='')}" for key, value in params.items())
    return f"{settings.APP_BASE_URL.rstrip('/')}{return_path}{separator}{query}"


@router.get("/connect")
async def start_calendar_connect(
    return_path: str = Query("/", max_length=512),
    context: TenantContext = Depends(get_tenant_context),
):
    """Return Google's consent URL for the calling agent."""
    if not is_safe_return_path(return_path):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid return_path")

    payload = OAuthStatePayload(
        tenant_id=context.tenant.id,
        agent_key=context.agent_key,
        role=context.role,
        return_path=return_path,
    )
    try:
        auth_url = await token_vault.build_consent_url(payload)
    except OAuthStateError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not start calendar connection",
        ) from e
    except GoogleOAuthError as e:
        logger.error("Consent URL generation failed", error=str(e), error_code=e.error_code)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Google Calendar is not configured",
        ) from e

    return {"auth_url": auth_url}


@router.get("/callback")
async def calendar_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
):
    """
    Finish the consent flow and send the browser back into the app.

    Always redirects: `calendarConnected=true` on success, otherwise
    `calendarError=<code>`.
    """
    payload = await oauth_state_service.consume(state) if state else None
    if payload is None:
        logger.warning("Calendar callback with invalid state")
        return RedirectResponse(build_return_url("/", calendarError="invalid_state"), status_code=302)

    def fail(error_code: str) -> RedirectResponse:
        return RedirectResponse(
            build_return_url(payload.return_path, calendarError=error_code), status_code=302
        )

    if error or not code:
        logger.info("Calendar consent declined", agent_key=payload.agent_key, error=error)
        return fail(error or "missing_code")

    tenant = await tenant_directory.get_tenant(payload.tenant_id)
    if tenant is None or not tenant.is_active():
        return fail("tenant_inactive")

    bind_tenant_context(tenant.id, tenant.name)
    try:
        await token_vault.connect(tenant_directory.store_for(tenant), payload.agent_key, code)
    except NoRefreshTokenError:
        return fail("no_refresh_token")
    except GoogleOAuthError as e:
        logger.error("Calendar code exchange failed", agent_key=payload.agent_key, error_code=e.error_code)
        return fail(e.error_code or "oauth_failed")
    except Exception as e:
        logger.error(
            "Unexpected error completing calendar connection",
            agent_key=payload.agent_key,
            error=str(e),
            error_type=type(e).__name__,
        )
        return fail("oauth_failed")
    finally:
        clear_tenant_context()

    return RedirectResponse(
        build_return_url(payload.return_path, calendarConnected="true"), status_code=302
    )


@router.get("/status", response_model=ConnectionStatus)
async def get_calendar_status(context: TenantContext = Depends(get_tenant_context)):
    return await token_vault.connection_status(context.store, context.agent_key)


@router.delete("/disconnect")
async def disconnect_calendar(context: TenantContext = Depends(get_tenant_context)):
    disconnected = await token_vault.disconnect(context.store, context.agent_key)
    return {"disconnected": disconnected}
