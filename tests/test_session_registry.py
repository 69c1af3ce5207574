import pytest

from signstream.core.errors import DuplicateSession
from signstream.schemas.streaming import SessionState, StreamingConfig


@pytest.mark.asyncio
async def test_create_get_remove(registry):
    session = await registry.create("s1", StreamingConfig(), now=100.0)

    assert session.state is SessionState.STREAMING
    assert session.last_activity_at == 100.0
    assert await registry.get("s1") is session
    assert len(registry) == 1

    assert await registry.remove("s1") is session
    assert await registry.get("s1") is None
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_duplicate_id_is_rejected(registry):
    first = await registry.create("s1", StreamingConfig())
    with pytest.raises(DuplicateSession):
        await registry.create("s1", StreamingConfig(languageCode="de-DE"))
    assert await registry.get("s1") is first


@pytest.mark.asyncio
async def test_remove_absent_is_noop(registry):
    assert await registry.remove("missing") is None
    await registry.create("s1", StreamingConfig())
    await registry.remove("s1")
    assert await registry.remove("s1") is None


@pytest.mark.asyncio
async def test_list_stale_uses_last_activity(registry):
    await registry.create("old", StreamingConfig(), now=0.0)
    await registry.create("fresh", StreamingConfig(), now=0.0)
    await registry.touch("fresh", now=250.0)

    stale = await registry.list_stale(now=400.0, timeout=300.0)
    assert [s.id for s in stale] == ["old"]

    assert await registry.list_stale(now=200.0, timeout=300.0) == []


@pytest.mark.asyncio
async def test_stats_report_connections(registry):
    await registry.create("s1", StreamingConfig(sampleRate=16000), now=10.0)

    stats = await registry.stats(now=12.5)

    assert stats["activeConnections"] == 1
    conn = stats["connections"][0]
    assert conn["id"] == "s1"
    assert conn["startTime"] == 10000
    assert conn["lastActivity"] == 10000
    assert conn["duration"] == 2500
    assert conn["config"]["sampleRate"] == 16000


@pytest.mark.asyncio
async def test_mark_closed_releases_waiters(registry):
    session = await registry.create("s1", StreamingConfig())
    assert not session.is_closed
    session.mark_closed()
    await session.wait_closed()
    assert session.state is SessionState.CLOSED
