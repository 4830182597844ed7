"""
Tenant registry backed by the control table public.tenants.
"""

from leadflow.db.helpers import fetch_all, fetch_one, with_db_retry
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.tenant_domain import Tenant
from leadflow.repositories.tenant_store import TenantStore

logger = get_logger(__name__)


class TenantDirectory:
    """Enumerates tenants and hands out stores bound to their schemas."""

    TENANT_COLUMNS = "id, name, schema_name, status"

    def __init__(self):
        self._stores: dict[str, TenantStore] = {}

    @with_db_retry(max_retries=3, base_delay=0.2)
    async def list_active_tenants(self) -> list[Tenant]:
        query = f"""
            SELECT {self.TENANT_COLUMNS}
            FROM public.tenants
            WHERE status = 'active'
            ORDER BY id ASC
        """
        rows = await fetch_all(query)
        tenants = [Tenant(**row) for row in rows]
        logger.debug("Active tenants loaded", count=len(tenants))
        return tenants

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        query = f"SELECT {self.TENANT_COLUMNS} FROM public.tenants WHERE id = %s"
        row = await fetch_one(query, (tenant_id,))
        return Tenant(**row) if row else None

    def store_for(self, tenant: Tenant) -> TenantStore:
        """Return the store for a tenant's schema (one instance per schema)."""
        store = self._stores.get(tenant.schema_name)
        if store is None:
            store = TenantStore(tenant.schema_name)
            self._stores[tenant.schema_name] = store
        return store


tenant_directory = TenantDirectory()
