from datetime import UTC, datetime, timedelta

import pytest
from cryptography.fernet import Fernet

from leadflow.auth.tenant import TenantContext, get_tenant_context
from leadflow.config import settings
from leadflow.db.helpers import DatabaseError
from leadflow.models.domain.agent_domain import Agent, Lead
from leadflow.models.domain.meeting_domain import Meeting
from leadflow.models.domain.tenant_domain import AssignmentCursor, Tenant

BASE_TIME = datetime(2024, 3, 4, 6, 0, tzinfo=UTC)  # 11:30 in Asia/Kolkata


class InMemoryTenantStore:
    """Dict-backed stand-in for TenantStore with the same method surface."""

    def __init__(self, schema_name: str = "tenant_acme"):
        self.schema_name = schema_name
        self.settings_row: dict | None = None
        self.agents: dict[str, Agent] = {}
        self.leads: dict[str, Lead] = {}
        self.tokens: dict[str, dict] = {}
        self.meetings: dict[str, Meeting] = {}
        self.claimed_elsewhere: set[str] = set()
        self.fail_settings = False

    # Seeding helpers

    def add_agent(self, key: str, online: bool = True, verified: bool = True, heartbeat=None):
        self.agents[key] = Agent(
            key=key,
            is_online=online,
            is_verified=verified,
            status="active" if online else "inactive",
            last_heartbeat=heartbeat,
        )
        return self.agents[key]

    def add_leads(self, count: int, prefix: str = "lead"):
        start = len(self.leads)
        for i in range(start, start + count):
            lead_id = f"{prefix}-{i:03d}"
            self.leads[lead_id] = Lead(
                id=lead_id,
                name=f"Lead {i}",
                email=f"{lead_id}@example.com",
                created_at=BASE_TIME + timedelta(seconds=i),
            )

    def assigned_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for lead in self.leads.values():
            if lead.assigned_to:
                counts[lead.assigned_to] = counts.get(lead.assigned_to, 0) + 1
        return counts

    # Settings and cursor

    async def get_settings(self) -> dict | None:
        if self.fail_settings:
            raise DatabaseError("settings table unavailable", operation="get_settings")
        return dict(self.settings_row) if self.settings_row else None

    async def insert_default_settings(self, **values) -> dict:
        if self.settings_row is None:
            self.settings_row = {
                **values,
                "cursor_last_index": -1,
                "cursor_last_agent_key": None,
                "cursor_last_assigned_at": None,
            }
        return dict(self.settings_row)

    async def update_settings(self, **values) -> dict:
        if self.settings_row is None:
            await self.insert_default_settings(**values)
        self.settings_row.update(values)
        return dict(self.settings_row)

    async def save_cursor(self, cursor: AssignmentCursor) -> None:
        self.settings_row.update(
            {
                "cursor_last_index": cursor.last_index,
                "cursor_last_agent_key": cursor.last_agent_key,
                "cursor_last_assigned_at": cursor.last_assigned_at,
            }
        )

    # Agents

    async def mark_stale_agents_offline(self, cutoff: datetime) -> int:
        flipped = 0
        for key, agent in self.agents.items():
            if agent.is_stale(cutoff):
                self.agents[key] = agent.model_copy(update={"is_online": False, "status": "inactive"})
                flipped += 1
        return flipped

    async def list_eligible_agents(self) -> list[Agent]:
        return sorted(
            (a for a in self.agents.values() if a.is_eligible()), key=lambda a: a.key
        )

    async def list_online_agents(self) -> list[Agent]:
        return sorted((a for a in self.agents.values() if a.is_online), key=lambda a: a.key)

    async def get_agent(self, agent_key: str) -> Agent | None:
        return self.agents.get(agent_key)

    async def record_heartbeat(self, agent_key: str, now: datetime) -> bool:
        agent = self.agents.get(agent_key)
        if agent is None:
            return False
        self.agents[agent_key] = agent.model_copy(
            update={"last_heartbeat": now, "is_online": True, "status": "active"}
        )
        return True

    # Leads

    def _unassigned(self) -> list[Lead]:
        return sorted(
            (lead for lead in self.leads.values() if lead.is_unassigned()),
            key=lambda lead: (lead.created_at, lead.id),
        )

    async def list_unassigned_leads(self, limit: int | None = None) -> list[Lead]:
        leads = self._unassigned()
        return leads[:limit] if limit is not None else leads

    async def count_unassigned_leads(self) -> int:
        return len(self._unassigned())

    async def get_lead(self, lead_id: str) -> Lead | None:
        return self.leads.get(lead_id)

    async def assign_lead(self, lead_id: str, agent_key: str, assigned_at: datetime) -> bool:
        if lead_id in self.claimed_elsewhere:
            self.leads[lead_id] = self.leads[lead_id].model_copy(update={"assigned_to": "someone-else"})
            return False
        lead = self.leads.get(lead_id)
        if lead is None or not lead.is_unassigned():
            return False
        self.leads[lead_id] = lead.model_copy(
            update={"assigned_to": agent_key, "assigned_at": assigned_at}
        )
        return True

    async def reassign_lead(self, lead_id: str, agent_key: str, assigned_at: datetime) -> bool:
        lead = self.leads.get(lead_id)
        if lead is None:
            return False
        self.leads[lead_id] = lead.model_copy(
            update={"assigned_to": agent_key, "assigned_at": assigned_at}
        )
        return True

    # Calendar tokens

    async def get_calendar_token(self, agent_key: str) -> dict | None:
        row = self.tokens.get(agent_key)
        return dict(row) if row else None

    async def save_calendar_token(self, agent_key: str, **values) -> None:
        self.tokens[agent_key] = {"agent_key": agent_key, **values}

    async def delete_calendar_token(self, agent_key: str) -> bool:
        return self.tokens.pop(agent_key, None) is not None

    # Meetings

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        return self.meetings.get(meeting_id)

    async def insert_meeting(self, meeting: Meeting) -> Meeting:
        stored = meeting.model_copy(update={"created_at": BASE_TIME, "updated_at": BASE_TIME})
        self.meetings[meeting.id] = stored
        return stored

    async def update_meeting(self, meeting: Meeting) -> Meeting:
        self.meetings[meeting.id] = meeting
        return meeting


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}
        self.healthy = True

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ttl_s
        return True

    async def get_and_delete(self, key: str) -> str | None:
        self.ttls.pop(key, None)
        return self.store.pop(key, None)

    async def ping(self) -> bool:
        return self.healthy


class FakeDirectory:
    """TenantDirectory stand-in holding tenants and their in-memory stores."""

    def __init__(self):
        self.tenants: dict[str, Tenant] = {}
        self.stores: dict[str, InMemoryTenantStore] = {}

    def add_tenant(self, tenant_id: str, status: str = "active") -> InMemoryTenantStore:
        tenant = Tenant(id=tenant_id, name=tenant_id.title(), schema_name=f"tenant_{tenant_id}", status=status)
        self.tenants[tenant_id] = tenant
        self.stores[tenant.schema_name] = InMemoryTenantStore(tenant.schema_name)
        return self.stores[tenant.schema_name]

    async def list_active_tenants(self) -> list[Tenant]:
        return [t for t in sorted(self.tenants.values(), key=lambda t: t.id) if t.is_active()]

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self.tenants.get(tenant_id)

    def store_for(self, tenant: Tenant) -> InMemoryTenantStore:
        return self.stores[tenant.schema_name]


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    monkeypatch.setattr(settings, "ENCRYPTION_KEY", Fernet.generate_key().decode("utf-8"))


@pytest.fixture
def store():
    return InMemoryTenantStore()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_directory():
    return FakeDirectory()


@pytest.fixture
def tenant():
    return Tenant(id="acme", name="Acme", schema_name="tenant_acme")


@pytest.fixture
def apply_context_override(tenant, store):
    """Install a get_tenant_context override for the given agent and role."""

    def _apply(app, agent_key: str = "alice@acme.test", role: str = "agent"):
        def _override():
            return TenantContext(tenant, store, {"sub": agent_key, "tenant_id": tenant.id, "role": role})

        app.dependency_overrides[get_tenant_context] = _override

    return _apply
