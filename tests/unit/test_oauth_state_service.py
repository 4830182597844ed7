import asyncio
import json

import pytest

from leadflow.models.domain.oauth_domain import OAuthStatePayload
from leadflow.services.oauth_state_service import OAuthStateError, OAuthStateService


@pytest.mark.asyncio
async def test_state_is_single_use(fake_redis):
    service = OAuthStateService(redis=fake_redis, ttl_seconds=600)
    payload = OAuthStatePayload(tenant_id="acme", agent_key="alice@acme.test", return_path="/leads")

    state = await service.issue(payload)

    assert fake_redis.ttls[f"oauth_state:{state}"] == 600
    assert await service.consume(state) == payload
    assert await service.consume(state) is None


@pytest.mark.asyncio
async def test_states_are_unique(fake_redis):
    service = OAuthStateService(redis=fake_redis)
    payload = OAuthStatePayload(tenant_id="acme", agent_key="alice@acme.test")

    assert await service.issue(payload) != await service.issue(payload)


@pytest.mark.asyncio
async def test_unknown_or_malformed_state(fake_redis):
    service = OAuthStateService(redis=fake_redis)
    fake_redis.store["oauth_state:broken"] = json.dumps({"agent_key": "no-tenant"})

    assert await service.consume("never-issued") is None
    assert await service.consume("") is None
    assert await service.consume("broken") is None


@pytest.mark.asyncio
async def test_issue_fails_when_redis_refuses(fake_redis):
    async def refuse(key, value, ttl_s=None):
        return False

    fake_redis.set_with_ttl = refuse
    service = OAuthStateService(redis=fake_redis)

    with pytest.raises(OAuthStateError):
        await service.issue(OAuthStatePayload(tenant_id="acme", agent_key="alice@acme.test"))


@pytest.mark.asyncio
async def test_concurrent_callbacks_redeem_state_once(fake_redis):
    service = OAuthStateService(redis=fake_redis)
    state = await service.issue(OAuthStatePayload(tenant_id="acme", agent_key="alice@acme.test"))

    results = await asyncio.gather(*(service.consume(state) for _ in range(5)))

    assert sum(result is not None for result in results) == 1
    assert f"oauth_state:{state}" not in fake_redis.store
