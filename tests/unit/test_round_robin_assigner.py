"""
Tests for round-robin lead assignment.
"""

import asyncio
from datetime import UTC, datetime

import pytest

from leadflow.models.domain.agent_domain import Agent, Lead
from leadflow.models.domain.tenant_domain import AssignmentCursor
from leadflow.services import round_robin_assigner
from leadflow.services.round_robin_assigner import plan_assignments, resume_index
from leadflow.services.tenant_config_service import default_config

BASE_TIME = datetime(2024, 3, 4, 6, 0, tzinfo=UTC)


def _agents(*keys: str) -> list[Agent]:
    return [Agent(key=key, is_online=True, is_verified=True, status="active") for key in keys]


def _leads(count: int) -> list[Lead]:
    return [Lead(id=f"lead-{i:03d}") for i in range(count)]


async def _seed(store, *agent_keys: str, leads: int, cursor: AssignmentCursor | None = None):
    for key in agent_keys:
        store.add_agent(key)
    store.add_leads(leads)
    await store.insert_default_settings(
        window_start_hour=9, window_end_hour=18, stale_threshold_minutes=30, inactivity_minutes=30
    )
    config = default_config("acme")
    if cursor is not None:
        config = config.model_copy(update={"cursor": cursor})
    return config


def test_resume_index_continues_after_cursor_agent():
    agents = _agents("a@x", "b@x", "c@x")
    assert resume_index(agents, AssignmentCursor(last_index=0, last_agent_key="a@x")) == 1
    assert resume_index(agents, AssignmentCursor(last_index=2, last_agent_key="c@x")) == 0


def test_resume_index_without_history_starts_at_zero():
    assert resume_index(_agents("a@x", "b@x"), AssignmentCursor()) == 0


def test_resume_index_self_heals_when_cursor_agent_left():
    agents = _agents("a@x", "b@x", "c@x")
    # Agent at the old slot went offline; restart at that slot instead of skipping past it
    assert resume_index(agents, AssignmentCursor(last_index=1, last_agent_key="gone@x")) == 1
    assert resume_index(agents, AssignmentCursor(last_index=5, last_agent_key="gone@x")) == 2


def test_resume_index_gives_departed_agents_slot_to_the_next_agent():
    # b@x held slot 1 and went offline; c@x now sits at slot 1 and is next
    agents = _agents("a@x", "c@x")
    cursor = AssignmentCursor(last_index=1, last_agent_key="b@x")

    assert resume_index(agents, cursor) == 1
    assert agents[resume_index(agents, cursor)].key == "c@x"


def test_plan_blocks_are_contiguous_per_agent():
    plan = plan_assignments(_agents("a@x", "b@x", "c@x"), _leads(9), AssignmentCursor())

    assert plan.leads_per_agent == 3
    assert [index for _, index in plan.pairs] == [0, 0, 0, 1, 1, 1, 2, 2, 2]


def test_plan_caps_each_agent_per_pass():
    plan = plan_assignments(_agents("a@x", "b@x"), _leads(8), AssignmentCursor(), unassigned_count=20)

    assert plan.leads_per_agent == 4
    assert len(plan.pairs) == 8


def test_plan_returns_none_when_nothing_to_do():
    assert plan_assignments([], _leads(3), AssignmentCursor()) is None
    assert plan_assignments(_agents("a@x"), [], AssignmentCursor()) is None


@pytest.mark.asyncio
async def test_assign_distributes_evenly_and_wraps_from_last_agent(store):
    config = await _seed(
        store, "a@x", "b@x", "c@x", leads=9, cursor=AssignmentCursor(last_index=2, last_agent_key="c@x")
    )

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.assigned == 9
    assert result.start_index == 0
    assert store.assigned_counts() == {"a@x": 3, "b@x": 3, "c@x": 3}
    # Oldest leads go to the first agent in rotation
    assert [store.leads[f"lead-{i:03d}"].assigned_to for i in range(3)] == ["a@x"] * 3
    assert result.cursor.last_agent_key == "c@x"
    assert store.settings_row["cursor_last_index"] == 2


@pytest.mark.asyncio
async def test_assign_continues_rotation_across_passes(store):
    config = await _seed(
        store, "a@x", "b@x", "c@x", leads=2, cursor=AssignmentCursor(last_index=1, last_agent_key="b@x")
    )

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.leads_per_agent == 1
    assert [a["agent_key"] for a in result.assignments] == ["c@x", "a@x"]
    assert store.settings_row["cursor_last_agent_key"] == "a@x"
    assert store.settings_row["cursor_last_index"] == 0


@pytest.mark.asyncio
async def test_assign_leaves_backlog_beyond_cap(store):
    config = await _seed(store, "a@x", "b@x", leads=20)

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.assigned == 8
    assert store.assigned_counts() == {"a@x": 4, "b@x": 4}
    assert await store.count_unassigned_leads() == 12


@pytest.mark.asyncio
async def test_assign_uneven_backlog_gives_remainder_to_later_agents(store):
    config = await _seed(store, "a@x", "b@x", "c@x", leads=10)

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.leads_per_agent == 4
    assert store.assigned_counts() == {"a@x": 4, "b@x": 4, "c@x": 2}
    assert result.cursor.last_agent_key == "c@x"


@pytest.mark.asyncio
async def test_assign_without_eligible_agents_is_a_noop(store):
    config = await _seed(store, leads=3)
    store.add_agent("offline@x", online=False)
    store.add_agent("unverified@x", verified=False)

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.skipped_reason == "no_eligible_agents"
    assert result.assigned == 0
    assert store.settings_row["cursor_last_index"] == -1


@pytest.mark.asyncio
async def test_assign_without_leads_keeps_cursor(store):
    cursor = AssignmentCursor(last_index=0, last_agent_key="a@x")
    config = await _seed(store, "a@x", "b@x", leads=0, cursor=cursor)

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.skipped_reason == "no_unassigned_leads"
    assert store.settings_row["cursor_last_index"] == -1


@pytest.mark.asyncio
async def test_assign_skips_leads_claimed_concurrently(store):
    config = await _seed(store, "a@x", "b@x", leads=4)
    store.claimed_elsewhere.add("lead-003")

    result = await round_robin_assigner.assign(store, config, BASE_TIME)

    assert result.assigned == 3
    assert store.leads["lead-003"].assigned_to == "someone-else"
    # Cursor tracks the last lead this pass actually assigned
    assert result.cursor.last_agent_key == "b@x"
    assert result.cursor.last_index == 1


@pytest.mark.asyncio
async def test_cancelled_pass_still_saves_cursor_for_written_leads(store, monkeypatch):
    config = await _seed(store, "a@x", "b@x", "c@x", leads=6)
    real_assign_lead = store.assign_lead

    async def stall_on_c(lead_id, agent_key, assigned_at):
        if agent_key == "c@x":
            await asyncio.Event().wait()
        return await real_assign_lead(lead_id, agent_key, assigned_at)

    monkeypatch.setattr(store, "assign_lead", stall_on_c)

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(round_robin_assigner.assign(store, config, BASE_TIME), timeout=0.05)

    assert store.assigned_counts() == {"a@x": 2, "b@x": 2}
    assert store.settings_row["cursor_last_index"] == 1
    assert store.settings_row["cursor_last_agent_key"] == "b@x"
