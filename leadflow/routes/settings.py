"""
Tenant settings routes: assignment window, heartbeat threshold and the
client inactivity timeout.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from leadflow.auth.tenant import TenantContext, get_admin_context, get_tenant_context
from leadflow.config import settings
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.api.settings_request import (
    AssignmentSettingsRequest,
    AssignmentSettingsResponse,
    InactivitySettingsResponse,
)
from leadflow.models.domain.tenant_domain import TenantConfig
from leadflow.services.tenant_config_service import TenantConfigError, tenant_config_store

logger = get_logger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])


def _to_response(config: TenantConfig) -> AssignmentSettingsResponse:
    return AssignmentSettingsResponse(
        window_start_hour=config.window_start_hour,
        window_end_hour=config.window_end_hour,
        stale_threshold_minutes=config.stale_threshold_minutes,
        inactivity_minutes=config.inactivity_minutes,
        time_zone=settings.ASSIGNMENT_TIMEZONE,
        is_default=config.is_default,
        cursor_last_agent_key=config.cursor.last_agent_key,
        cursor_last_assigned_at=config.cursor.last_assigned_at,
    )


@router.get("/assignment", response_model=AssignmentSettingsResponse)
async def get_assignment_settings(context: TenantContext = Depends(get_admin_context)):
    config = await tenant_config_store.load(context.tenant.id, context.store)
    return _to_response(config)


@router.put("/assignment", response_model=AssignmentSettingsResponse)
async def update_assignment_settings(
    request: AssignmentSettingsRequest, context: TenantContext = Depends(get_admin_context)
):
    try:
        config = await tenant_config_store.update(
            context.tenant.id,
            context.store,
            window_start_hour=request.window_start_hour,
            window_end_hour=request.window_end_hour,
            stale_threshold_minutes=request.stale_threshold_minutes,
            inactivity_minutes=request.inactivity_minutes,
        )
    except TenantConfigError as e:
        if not e.recoverable:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save assignment settings",
        ) from e

    logger.info("Assignment settings changed", tenant_id=context.tenant.id, changed_by=context.agent_key)
    return _to_response(config)


@router.get("/inactivity", response_model=InactivitySettingsResponse)
async def get_inactivity_settings(context: TenantContext = Depends(get_tenant_context)):
    """Idle-logout timeout for clients; any signed-in agent may read it."""
    config = await tenant_config_store.load(context.tenant.id, context.store)
    return InactivitySettingsResponse(
        inactivity_minutes=config.inactivity_minutes, is_default=config.is_default
    )
