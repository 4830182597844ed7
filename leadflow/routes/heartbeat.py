"""
Heartbeat route. Clients call it periodically while an agent is active.
"""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, status

from leadflow.auth.tenant import TenantContext, get_tenant_context
from leadflow.db.helpers import DatabaseError
from leadflow.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["heartbeat"])


@router.post("/heartbeat")
async def heartbeat(context: TenantContext = Depends(get_tenant_context)):
    now = datetime.now(UTC)
    try:
        updated = await context.store.record_heartbeat(context.agent_key, now)
    except DatabaseError as e:
        logger.error("Heartbeat update failed", agent_key=context.agent_key, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Heartbeat not recorded"
        ) from e

    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Agent not found")

    return {"ok": True, "last_heartbeat": now.isoformat(), "is_online": True}
