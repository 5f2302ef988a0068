"""Sync Broadcaster: authorised subscriptions, ordering and back-pressure."""

from uuid import uuid4

import pytest

from knitcount.core.errors import BoundsExceeded, Unauthorized
from knitcount.domain.links import CounterLinkCreate, LinkAction, TriggerCondition
from knitcount.services.counter_events import CounterEventBroker


async def _allow_all(project_id, user_id):
    return True


@pytest.mark.asyncio
async def test_subscribe_without_ownership_is_rejected(engine, broker, project):
    with pytest.raises(Unauthorized):
        await broker.subscribe(project.project_id, uuid4())
    assert broker.subscriber_count(project.project_id) == 0


@pytest.mark.asyncio
async def test_broker_without_authorizer_denies():
    broker = CounterEventBroker()
    with pytest.raises(Unauthorized):
        await broker.subscribe(uuid4(), uuid4())


@pytest.mark.asyncio
async def test_cascade_is_published_after_commit_in_order(
    engine, broker, project, user_id, make_counter
):
    rows = await make_counter("Rows", current_value=7)
    cable = await make_counter("Cable", current_value=5)
    await engine.register_link(
        project,
        CounterLinkCreate(
            source_counter_id=rows.id,
            target_counter_id=cable.id,
            trigger_condition=TriggerCondition(operator="equals", value=8),
            action=LinkAction(type="reset", value=1),
        ),
    )

    async with await broker.subscribe(project.project_id, user_id) as subscription:
        outcome = await engine.increment(project, rows.id, origin="phone")
        first = await subscription.get()
        second = await subscription.get()

    assert (first.counter_id, first.current_value, first.linked_from) == (rows.id, 8, None)
    assert (second.counter_id, second.current_value, second.linked_from) == (cable.id, 1, rows.id)
    assert second.sequence == first.sequence + 1
    assert first.origin == second.origin == "phone"
    assert [event.sequence for event in outcome.events] == [first.sequence, second.sequence]
    assert subscription.closed


@pytest.mark.asyncio
async def test_rejected_update_publishes_nothing(engine, broker, project, user_id, make_counter):
    counter = await make_counter(current_value=3, max_value=3)
    subscription = await broker.subscribe(project.project_id, user_id)
    before = broker.current_sequence(project.project_id)

    with pytest.raises(BoundsExceeded):
        await engine.increment(project, counter.id)

    assert subscription.pending() == 0
    assert broker.current_sequence(project.project_id) == before
    subscription.close()


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking():
    broker = CounterEventBroker(maxsize=2, authorize=_allow_all)
    project_id, counter_id = uuid4(), uuid4()
    slow = await broker.subscribe(project_id, uuid4())
    fast = await broker.subscribe(project_id, uuid4())

    for value in range(1, 4):
        broker.publish(project_id, counter_id, value, "increment")
        if value < 3:
            await fast.get()

    assert slow.pending() == 2
    assert [(await slow.get()).sequence for _ in range(2)] == [1, 2]
    assert (await fast.get()).sequence == 3


@pytest.mark.asyncio
async def test_channels_are_isolated_per_project():
    broker = CounterEventBroker(authorize=_allow_all)
    knitting, crochet = uuid4(), uuid4()
    subscription = await broker.subscribe(knitting, uuid4())

    broker.publish(crochet, uuid4(), 1, "increment")
    event = broker.publish(knitting, uuid4(), 1, "increment")

    assert subscription.pending() == 1
    assert event.sequence == 1
    assert broker.current_sequence(crochet) == 1


@pytest.mark.asyncio
async def test_closed_subscription_is_unregistered():
    broker = CounterEventBroker(authorize=_allow_all)
    project_id = uuid4()
    subscription = await broker.subscribe(project_id, uuid4())
    subscription.close()

    broker.publish(project_id, uuid4(), 1, "increment")

    assert broker.subscriber_count(project_id) == 0
    assert [event async for event in subscription] == []
