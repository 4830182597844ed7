"""
Resolves the caller's tenant and its store from verified claims.
"""

from fastapi import Depends, HTTPException, status

from leadflow.auth.verify import auth_dependency
from leadflow.infrastructure.observability.logging import bind_tenant_context, get_logger
from leadflow.models.domain.tenant_domain import Tenant
from leadflow.repositories.tenant_directory import tenant_directory
from leadflow.repositories.tenant_store import TenantStore

logger = get_logger(__name__)


class TenantContext:
    """Who is calling and which tenant store they act on."""

    def __init__(self, tenant: Tenant, store: TenantStore, claims: dict):
        self.tenant = tenant
        self.store = store
        self.agent_key: str = claims["sub"]
        self.role: str = claims.get("role", "agent")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_tenant_context(claims: dict = Depends(auth_dependency)) -> TenantContext:
    tenant = await tenant_directory.get_tenant(claims["tenant_id"])
    if tenant is None or not tenant.is_active():
        logger.warning("Request for unknown or inactive tenant", tenant_id=claims["tenant_id"])
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant is not active")

    bind_tenant_context(tenant.id, tenant.name)
    return TenantContext(tenant, tenant_directory.store_for(tenant), claims)


async def get_admin_context(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    if not context.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return context
