"""
Per-tenant persistence.

Every tenant owns a PostgreSQL schema; a TenantStore is bound to one schema
and is the only handle services receive for reading and writing that
tenant's settings, agents, leads, calendar tokens and meetings.
"""

from datetime import datetime

from psycopg import sql
from psycopg.types.json import Jsonb

from leadflow.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from leadflow.infrastructure.observability.logging import get_logger
from leadflow.models.domain.agent_domain import Agent, Lead
from leadflow.models.domain.meeting_domain import Meeting
from leadflow.models.domain.tenant_domain import AssignmentCursor

logger = get_logger(__name__)

SETTINGS_NAME = "assignment"


class TenantStoreError(DatabaseError):
    """Raised when a tenant-scoped write does not take effect."""


class TenantStore:
    """Queries scoped to a single tenant schema."""

    SETTINGS_COLUMNS = """
        window_start_hour, window_end_hour, stale_threshold_minutes, inactivity_minutes,
        cursor_last_index, cursor_last_agent_key, cursor_last_assigned_at
    """

    AGENT_COLUMNS = "key, display_name, role, is_online, is_verified, status, last_heartbeat"

    LEAD_COLUMNS = "id, name, email, assigned_to, assigned_at, created_at"

    TOKEN_COLUMNS = """
        agent_key, access_token, refresh_token, expires_at,
        provider_email, provider_name, connected_at
    """

    MEETING_COLUMNS = """
        id, lead_id, owner_key, title, description, location, start_at, end_at,
        time_zone, attendees, remote_event_id, remote_join_link, calendar_synced,
        status, cancelled_at, created_at, updated_at
    """

    def __init__(self, schema_name: str):
        self.schema_name = schema_name
        self._schema = sql.Identifier(schema_name)

    def __repr__(self) -> str:
        return f"TenantStore(schema_name={self.schema_name!r})"

    def _q(self, template: str) -> sql.Composed:
        return sql.SQL(template).format(schema=self._schema)

    # ------------------------------------------------------------------
    # Settings and cursor
    # ------------------------------------------------------------------

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def get_settings(self) -> dict | None:
        query = self._q(
            f"SELECT {self.SETTINGS_COLUMNS} FROM {{schema}}.settings WHERE name = %s"
        )
        return await fetch_one(query, (SETTINGS_NAME,))

    async def insert_default_settings(
        self,
        window_start_hour: int,
        window_end_hour: int,
        stale_threshold_minutes: int,
        inactivity_minutes: int,
    ) -> dict:
        """Create the settings row if missing and return whatever row is stored."""
        query = self._q(
            """
            INSERT INTO {schema}.settings (
                name, window_start_hour, window_end_hour,
                stale_threshold_minutes, inactivity_minutes
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (name) DO NOTHING
            """
        )
        await execute_query(
            query,
            (
                SETTINGS_NAME,
                window_start_hour,
                window_end_hour,
                stale_threshold_minutes,
                inactivity_minutes,
            ),
        )
        row = await self.get_settings()
        if not row:
            raise TenantStoreError(
                "Settings row missing after insert", operation="insert_default_settings"
            )
        return row

    async def update_settings(
        self,
        window_start_hour: int,
        window_end_hour: int,
        stale_threshold_minutes: int,
        inactivity_minutes: int,
    ) -> dict:
        """Upsert the window and thresholds, leaving the cursor alone."""
        query = self._q(
            f"""
            INSERT INTO {{schema}}.settings (
                name, window_start_hour, window_end_hour,
                stale_threshold_minutes, inactivity_minutes
            ) VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (name) DO UPDATE SET
                window_start_hour = EXCLUDED.window_start_hour,
                window_end_hour = EXCLUDED.window_end_hour,
                stale_threshold_minutes = EXCLUDED.stale_threshold_minutes,
                inactivity_minutes = EXCLUDED.inactivity_minutes,
                updated_at = NOW()
            RETURNING {self.SETTINGS_COLUMNS}
            """
        )
        row = await fetch_one(
            query,
            (
                SETTINGS_NAME,
                window_start_hour,
                window_end_hour,
                stale_threshold_minutes,
                inactivity_minutes,
            ),
        )
        if not row:
            raise TenantStoreError("Settings update returned no row", operation="update_settings")
        return row

    async def save_cursor(self, cursor: AssignmentCursor) -> None:
        # Plain read-modify-write: one scheduler per deployment
        query = self._q(
            """
            UPDATE {schema}.settings
            SET cursor_last_index = %s,
                cursor_last_agent_key = %s,
                cursor_last_assigned_at = %s,
                updated_at = NOW()
            WHERE name = %s
            """
        )
        affected = await execute_query(
            query,
            (cursor.last_index, cursor.last_agent_key, cursor.last_assigned_at, SETTINGS_NAME),
        )
        if affected == 0:
            raise TenantStoreError("No settings row to hold the cursor", operation="save_cursor")

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    async def mark_stale_agents_offline(self, cutoff: datetime) -> int:
        """Flip online agents whose heartbeat is missing or older than cutoff."""
        query = self._q(
            """
            UPDATE {schema}.agents
            SET is_online = FALSE,
                status = 'inactive',
                updated_at = NOW()
            WHERE is_online = TRUE
              AND (last_heartbeat IS NULL OR last_heartbeat < %s)
            """
        )
        return await execute_query(query, (cutoff,))

    async def list_eligible_agents(self) -> list[Agent]:
        """Online, verified agents ordered by key."""
        query = self._q(
            f"""
            SELECT {self.AGENT_COLUMNS}
            FROM {{schema}}.agents
            WHERE is_online = TRUE AND is_verified = TRUE
            ORDER BY key ASC
            """
        )
        rows = await fetch_all(query)
        return [Agent(**row) for row in rows]

    async def list_online_agents(self) -> list[Agent]:
        """Every agent currently flagged online, verified or not, ordered by key."""
        query = self._q(
            f"""
            SELECT {self.AGENT_COLUMNS}
            FROM {{schema}}.agents
            WHERE is_online = TRUE
            ORDER BY key ASC
            """
        )
        rows = await fetch_all(query)
        return [Agent(**row) for row in rows]

    async def get_agent(self, agent_key: str) -> Agent | None:
        query = self._q(f"SELECT {self.AGENT_COLUMNS} FROM {{schema}}.agents WHERE key = %s")
        row = await fetch_one(query, (agent_key,))
        return Agent(**row) if row else None

    async def record_heartbeat(self, agent_key: str, now: datetime) -> bool:
        query = self._q(
            """
            UPDATE {schema}.agents
            SET last_heartbeat = %s,
                is_online = TRUE,
                status = 'active',
                updated_at = NOW()
            WHERE key = %s
            """
        )
        return await execute_query(query, (now, agent_key)) > 0

    # ------------------------------------------------------------------
    # Leads
    # ------------------------------------------------------------------

    async def list_unassigned_leads(self, limit: int | None = None) -> list[Lead]:
        """Unassigned leads, oldest first."""
        template = f"""
            SELECT {self.LEAD_COLUMNS}
            FROM {{schema}}.leads
            WHERE assigned_to IS NULL OR assigned_to = ''
            ORDER BY created_at ASC, id ASC
        """
        if limit is not None:
            rows = await fetch_all(self._q(template + " LIMIT %s"), (limit,))
        else:
            rows = await fetch_all(self._q(template))
        return [Lead(**row) for row in rows]

    async def count_unassigned_leads(self) -> int:
        query = self._q(
            """
            SELECT COUNT(*) AS total FROM {schema}.leads
            WHERE assigned_to IS NULL OR assigned_to = ''
            """
        )
        row = await fetch_one(query)
        return int(row["total"]) if row else 0

    async def get_lead(self, lead_id: str) -> Lead | None:
        query = self._q(f"SELECT {self.LEAD_COLUMNS} FROM {{schema}}.leads WHERE id = %s")
        row = await fetch_one(query, (lead_id,))
        return Lead(**row) if row else None

    async def assign_lead(self, lead_id: str, agent_key: str, assigned_at: datetime) -> bool:
        """Assign a lead only if it is still unassigned."""
        query = self._q(
            """
            UPDATE {schema}.leads
            SET assigned_to = %s,
                assigned_at = %s
            WHERE id = %s
              AND (assigned_to IS NULL OR assigned_to = '')
            """
        )
        return await execute_query(query, (agent_key, assigned_at, lead_id)) > 0

    async def reassign_lead(self, lead_id: str, agent_key: str, assigned_at: datetime) -> bool:
        """Unconditional override used by administrators."""
        query = self._q(
            "UPDATE {schema}.leads SET assigned_to = %s, assigned_at = %s WHERE id = %s"
        )
        return await execute_query(query, (agent_key, assigned_at, lead_id)) > 0

    # ------------------------------------------------------------------
    # Calendar tokens (encrypted columns, opaque to this layer)
    # ------------------------------------------------------------------

    async def get_calendar_token(self, agent_key: str) -> dict | None:
        query = self._q(
            f"SELECT {self.TOKEN_COLUMNS} FROM {{schema}}.agent_calendar_tokens WHERE agent_key = %s"
        )
        row = await fetch_one(query, (agent_key,))
        if row:
            # BYTEA comes back as memoryview
            row["access_token"] = bytes(row["access_token"])
            row["refresh_token"] = bytes(row["refresh_token"])
        return row

    async def save_calendar_token(
        self,
        agent_key: str,
        access_token: bytes,
        refresh_token: bytes,
        expires_at: datetime,
        provider_email: str,
        provider_name: str | None,
        connected_at: datetime,
    ) -> None:
        query = self._q(
            """
            INSERT INTO {schema}.agent_calendar_tokens (
                agent_key, access_token, refresh_token, expires_at,
                provider_email, provider_name, connected_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (agent_key) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = EXCLUDED.refresh_token,
                expires_at = EXCLUDED.expires_at,
                provider_email = EXCLUDED.provider_email,
                provider_name = EXCLUDED.provider_name,
                connected_at = EXCLUDED.connected_at,
                updated_at = NOW()
            """
        )
        await execute_query(
            query,
            (
                agent_key,
                access_token,
                refresh_token,
                expires_at,
                provider_email,
                provider_name,
                connected_at,
            ),
        )

    async def delete_calendar_token(self, agent_key: str) -> bool:
        query = self._q("DELETE FROM {schema}.agent_calendar_tokens WHERE agent_key = %s")
        return await execute_query(query, (agent_key,)) > 0

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        query = self._q(f"SELECT {self.MEETING_COLUMNS} FROM {{schema}}.meetings WHERE id = %s")
        row = await fetch_one(query, (meeting_id,))
        return Meeting(**row) if row else None

    async def insert_meeting(self, meeting: Meeting) -> Meeting:
        query = self._q(
            f"""
            INSERT INTO {{schema}}.meetings (
                id, lead_id, owner_key, title, description, location, start_at, end_at,
                time_zone, attendees, remote_event_id, remote_join_link, calendar_synced, status
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {self.MEETING_COLUMNS}
            """
        )
        row = await fetch_one(
            query,
            (
                meeting.id,
                meeting.lead_id,
                meeting.owner_key,
                meeting.title,
                meeting.description,
                meeting.location,
                meeting.start_at,
                meeting.end_at,
                meeting.time_zone,
                Jsonb(meeting.attendees),
                meeting.remote_event_id,
                meeting.remote_join_link,
                meeting.calendar_synced,
                meeting.status,
            ),
        )
        if not row:
            raise TenantStoreError("Meeting insert returned no row", operation="insert_meeting")
        return Meeting(**row)

    async def update_meeting(self, meeting: Meeting) -> Meeting:
        """Persist every mutable field of an existing meeting."""
        query = self._q(
            f"""
            UPDATE {{schema}}.meetings
            SET title = %s,
                description = %s,
                location = %s,
                start_at = %s,
                end_at = %s,
                time_zone = %s,
                attendees = %s,
                remote_event_id = %s,
                remote_join_link = %s,
                calendar_synced = %s,
                status = %s,
                cancelled_at = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {self.MEETING_COLUMNS}
            """
        )
        row = await fetch_one(
            query,
            (
                meeting.title,
                meeting.description,
                meeting.location,
                meeting.start_at,
                meeting.end_at,
                meeting.time_zone,
                Jsonb(meeting.attendees),
                meeting.remote_event_id,
                meeting.remote_join_link,
                meeting.calendar_synced,
                meeting.status,
                meeting.cancelled_at,
                meeting.id,
            ),
        )
        if not row:
            raise TenantStoreError(
                f"Meeting {meeting.id} not found", operation="update_meeting", recoverable=False
            )
        return Meeting(**row)
