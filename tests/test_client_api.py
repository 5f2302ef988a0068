"""Optimistic client against the real app over an in-process transport."""

from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from knitcount.api.dependencies import get_counter_engine
from knitcount.client.api import CounterSyncClient
from knitcount.client.optimistic import NoticeKind, OptimisticCounterState
from knitcount.core.security import create_access_token
from knitcount.domain.links import CounterLinkCreate, LinkAction, TriggerCondition
from knitcount.main import create_app


@pytest.fixture
def app(engine):
    application = create_app()
    application.dependency_overrides[get_counter_engine] = lambda: engine
    return application


@pytest_asyncio.fixture
async def sync_client(app, project):
    token = create_access_token(project.user_id)
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    client = CounterSyncClient(
        "http://test",
        token,
        project.project_id,
        state=OptimisticCounterState(client_id="phone"),
        http=http,
    )
    yield client
    await client.aclose()


@pytest.mark.asyncio
async def test_resync_tracks_every_counter(sync_client, make_counter):
    rows = await make_counter("Rows", current_value=4)
    repeats = await make_counter("Repeats")

    snapshot = await sync_client.resync()

    assert {counter.id for counter in snapshot.counters} == {rows.id, repeats.id}
    assert sync_client.state.value(rows.id) == 4
    assert sync_client.state.last_sequence == snapshot.sequence


@pytest.mark.asyncio
async def test_increment_is_confirmed_by_server(sync_client, make_counter):
    rows = await make_counter("Rows", increment_by=2)
    await sync_client.resync()

    result = await sync_client.increment(rows.id)

    assert result is not None
    assert result.data.current_value == 2
    assert sync_client.state.value(rows.id) == 2
    assert sync_client.state.confirmed_value(rows.id) == 2
    assert not sync_client.state.is_pending(rows.id)


@pytest.mark.asyncio
async def test_bounds_rejection_rolls_back_display(sync_client, make_counter):
    rows = await make_counter("Rows", current_value=3, max_value=3)
    await sync_client.resync()

    result = await sync_client.increment(rows.id)

    assert result is None
    assert sync_client.state.value(rows.id) == 3
    notices = sync_client.state.drain_notices()
    assert [notice.kind for notice in notices] == [NoticeKind.ROLLED_BACK]
    assert notices[0].message == "Cannot exceed maximum value of 3"


@pytest.mark.asyncio
async def test_missing_history_entry_is_raised(sync_client, make_counter):
    rows = await make_counter("Rows")
    await sync_client.resync()

    with pytest.raises(httpx.HTTPStatusError) as excinfo:
        await sync_client.undo(rows.id, uuid4())

    assert excinfo.value.response.status_code == 404
    assert sync_client.state.value(rows.id) == 0


@pytest.mark.asyncio
async def test_gap_in_event_stream_triggers_resync(sync_client, make_counter, engine, project):
    rows = await make_counter("Rows")
    await sync_client.resync()
    start = sync_client.state.last_sequence

    await engine.increment(project, rows.id)
    await engine.increment(project, rows.id)

    await sync_client.handle_event(
        {
            "event": "update",
            "data": {
                "project_id": str(project.project_id),
                "counter_id": str(rows.id),
                "current_value": 2,
                "action": "increment",
                "sequence": start + 2,
            },
        }
    )

    assert not sync_client.state.needs_resync
    assert sync_client.state.last_sequence == start + 2
    assert sync_client.state.value(rows.id) == 2


@pytest.mark.asyncio
async def test_cascaded_counters_reach_local_state(sync_client, make_counter, engine, project):
    rows = await make_counter("Rows", current_value=7)
    repeats = await make_counter("Repeats")
    await engine.register_link(
        project,
        CounterLinkCreate(
            source_counter_id=rows.id,
            target_counter_id=repeats.id,
            trigger_condition=TriggerCondition(operator="equals", value=8),
            action=LinkAction(type="increment"),
        ),
    )
    await sync_client.resync()

    result = await sync_client.increment(rows.id)

    assert {counter.id for counter in result.changed} == {rows.id, repeats.id}
    assert sync_client.state.value(rows.id) == 8
    assert sync_client.state.value(repeats.id) == 1
    assert sync_client.state.confirmed_value(repeats.id) == 1
