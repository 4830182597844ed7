"""
Tenant configuration service.
Reads and writes per-tenant assignment settings, falling back to the
static defaults from settings when a tenant's row cannot be read.
"""

from pydantic import ValidationError

from leadflow.config import settings
from leadflow.db.helpers import DatabaseError
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.tenant_domain import AssignmentCursor, TenantConfig
from leadflow.repositories.tenant_store import TenantStore

logger = get_logger(__name__)


class TenantConfigError(Exception):
    """Custom exception for tenant configuration operations."""

    def __init__(self, message: str, tenant_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.tenant_id = tenant_id
        self.recoverable = recoverable


def default_config(tenant_id: str) -> TenantConfig:
    """Static defaults used when a tenant has no readable settings."""
    return TenantConfig(
        tenant_id=tenant_id,
        window_start_hour=settings.DEFAULT_WINDOW_START_HOUR,
        window_end_hour=settings.DEFAULT_WINDOW_END_HOUR,
        stale_threshold_minutes=settings.DEFAULT_STALE_HEARTBEAT_MINUTES,
        inactivity_minutes=settings.DEFAULT_INACTIVITY_MINUTES,
        is_default=True,
    )


def _row_to_config(tenant_id: str, row: dict) -> TenantConfig:
    return TenantConfig(
        tenant_id=tenant_id,
        window_start_hour=row["window_start_hour"],
        window_end_hour=row["window_end_hour"],
        stale_threshold_minutes=row["stale_threshold_minutes"],
        inactivity_minutes=row["inactivity_minutes"],
        cursor=AssignmentCursor(
            last_index=row.get("cursor_last_index", -1),
            last_agent_key=row.get("cursor_last_agent_key"),
            last_assigned_at=row.get("cursor_last_assigned_at"),
        ),
    )


class TenantConfigStore:
    """Per-tenant settings with lazy creation and default fallback."""

    async def load(self, tenant_id: str, store: TenantStore) -> TenantConfig:
        """
        Load a tenant's config, creating the row with defaults on first read.

        Never raises: unreadable or invalid settings are logged and the
        static defaults are returned instead.
        """
        try:
            row = await store.get_settings()
            if row is None:
                defaults = default_config(tenant_id)
                row = await store.insert_default_settings(
                    window_start_hour=defaults.window_start_hour,
                    window_end_hour=defaults.window_end_hour,
                    stale_threshold_minutes=defaults.stale_threshold_minutes,
                    inactivity_minutes=defaults.inactivity_minutes,
                )
                logger.info("Tenant settings initialized with defaults", tenant_id=tenant_id)
            return _row_to_config(tenant_id, row)

        except (DatabaseError, ValidationError, KeyError) as e:
            error = TenantConfigError(f"Tenant config unavailable: {e}", tenant_id=tenant_id)
            logger.warning(
                "Using default tenant config",
                tenant_id=tenant_id,
                error=str(error),
                error_type=type(e).__name__,
            )
            return default_config(tenant_id)

    async def update(
        self,
        tenant_id: str,
        store: TenantStore,
        *,
        window_start_hour: int,
        window_end_hour: int,
        stale_threshold_minutes: int,
        inactivity_minutes: int,
    ) -> TenantConfig:
        """
        Validate and persist new window/threshold values.

        Raises:
            TenantConfigError: If the values are out of range (recoverable=False)
                or the write fails
        """
        try:
            TenantConfig(
                tenant_id=tenant_id,
                window_start_hour=window_start_hour,
                window_end_hour=window_end_hour,
                stale_threshold_minutes=stale_threshold_minutes,
                inactivity_minutes=inactivity_minutes,
            )
        except ValidationError as e:
            raise TenantConfigError(
                f"Invalid tenant config: {e.errors()[0]['msg']}",
                tenant_id=tenant_id,
                recoverable=False,
            ) from e

        try:
            row = await store.update_settings(
                window_start_hour=window_start_hour,
                window_end_hour=window_end_hour,
                stale_threshold_minutes=stale_threshold_minutes,
                inactivity_minutes=inactivity_minutes,
            )
        except DatabaseError as e:
            logger.error("Failed to update tenant config", tenant_id=tenant_id, error=str(e))
            raise TenantConfigError(f"Failed to save tenant config: {e}", tenant_id=tenant_id) from e

        logger.info(
            "Tenant config updated",
            tenant_id=tenant_id,
            window_start_hour=window_start_hour,
            window_end_hour=window_end_hour,
            stale_threshold_minutes=stale_threshold_minutes,
            inactivity_minutes=inactivity_minutes,
        )
        return _row_to_config(tenant_id, row)

    async def save_cursor(self, tenant_id: str, store: TenantStore, cursor: AssignmentCursor) -> None:
        await store.save_cursor(cursor)
        logger.debug(
            "Assignment cursor saved",
            tenant_id=tenant_id,
            last_index=cursor.last_index,
            last_agent_key=cursor.last_agent_key,
        )


tenant_config_store = TenantConfigStore()
