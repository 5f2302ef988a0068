"""Counter Store behaviour through the engine's unit of work."""

from uuid import uuid4

import pytest
from sqlalchemy import text

from knitcount.core.errors import BoundsExceeded, NotFound, Unauthorized, ValidationError
from knitcount.domain.counters import CounterCreate, CounterUpdate, ValueMode
from knitcount.domain.history import HistoryAction
from knitcount.domain.links import CounterLinkCreate, LinkAction, TriggerCondition
from knitcount.domain.pagination import PaginationParams
from knitcount.domain.projects import ProjectContext, ProjectCreate


@pytest.mark.asyncio
async def test_create_counter_records_created_entry(engine, project):
    counter, entry = await engine.create_counter(
        project, CounterCreate(name="Rows", current_value=3, max_value=40)
    )

    assert counter.current_value == 3
    assert counter.sort_order == 0
    assert entry.action is HistoryAction.CREATED
    assert (entry.old_value, entry.new_value) == (0, 3)


@pytest.mark.asyncio
async def test_sort_order_defaults_to_next_slot(make_counter):
    first = await make_counter("Rows")
    second = await make_counter("Stitches")
    assert (first.sort_order, second.sort_order) == (0, 1)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [
        {"min_value": 10, "max_value": 5},
        {"current_value": 12, "max_value": 10},
        {"current_value": -1},
    ],
)
async def test_create_counter_rejects_inconsistent_bounds(engine, project, fields):
    with pytest.raises(ValidationError):
        await engine.create_counter(project, CounterCreate(name="Bad", **fields))


@pytest.mark.asyncio
async def test_increment_at_max_is_rejected_and_unchanged(engine, project, make_counter):
    counter = await make_counter(current_value=10, max_value=10)

    with pytest.raises(BoundsExceeded) as excinfo:
        await engine.increment(project, counter.id)

    assert excinfo.value.candidate == 11
    assert (await engine.get_counter(project, counter.id)).current_value == 10
    entries, _ = await engine.history_page(project, counter.id, PaginationParams())
    assert [entry.action for entry in entries] == [HistoryAction.CREATED]


@pytest.mark.asyncio
async def test_decrement_below_min_is_rejected(engine, project, make_counter):
    counter = await make_counter(current_value=0)
    with pytest.raises(BoundsExceeded):
        await engine.decrement(project, counter.id)


@pytest.mark.asyncio
async def test_history_entries_chain(engine, project, make_counter):
    counter = await make_counter()
    for _ in range(3):
        await engine.increment(project, counter.id)
    await engine.update_value(project, counter.id, ValueMode.SET, 10)
    await engine.update_value(project, counter.id, ValueMode.RESET)

    entries, meta = await engine.history_page(project, counter.id, PaginationParams())
    oldest_first = list(reversed(entries))
    for previous, current in zip(oldest_first, oldest_first[1:]):
        assert current.old_value == previous.new_value
    assert oldest_first[-1].new_value == 0
    assert meta.total == 6


@pytest.mark.asyncio
async def test_every_n_counter_only_logs_moving_clicks(engine, project, make_counter):
    counter = await make_counter(increment_pattern={"type": "every_n", "n": 2})

    first = await engine.increment(project, counter.id)
    second = await engine.increment(project, counter.id)

    assert first.counter.current_value == 0
    assert first.history == []
    assert second.counter.current_value == 1
    assert [entry.action for entry in second.history] == [HistoryAction.INCREMENT]


@pytest.mark.asyncio
async def test_set_requires_amount(engine, project, make_counter):
    counter = await make_counter()
    with pytest.raises(ValidationError):
        await engine.update_value(project, counter.id, ValueMode.SET)


@pytest.mark.asyncio
async def test_inactive_counter_rejects_mutations(engine, project, make_counter):
    counter = await make_counter()
    await engine.set_active(project, counter.id, False)

    with pytest.raises(ValidationError):
        await engine.increment(project, counter.id)


@pytest.mark.asyncio
async def test_update_counter_cannot_strand_current_value(engine, project, make_counter):
    counter = await make_counter(current_value=8)

    with pytest.raises(ValidationError):
        await engine.update_counter(project, counter.id, CounterUpdate(max_value=5))

    updated = await engine.update_counter(
        project, counter.id, CounterUpdate(max_value=20, display_color="#AA00FF")
    )
    assert updated.max_value == 20
    assert updated.display_color == "#AA00FF"


@pytest.mark.asyncio
@pytest.mark.parametrize("field", ["name", "type", "increment_by", "display_color"])
async def test_update_counter_rejects_clearing_required_fields(
    engine, project, make_counter, field
):
    counter = await make_counter("Rows", increment_by=2)

    with pytest.raises(ValidationError):
        await engine.update_counter(
            project, counter.id, CounterUpdate.model_validate({field: None})
        )

    unchanged = await engine.get_counter(project, counter.id)
    assert (unchanged.name, unchanged.increment_by) == ("Rows", 2)


@pytest.mark.asyncio
async def test_parent_must_be_in_same_project(engine, user_id, project, make_counter):
    other = await engine.create_project(user_id, ProjectCreate(name="Socks"))
    other_ctx = ProjectContext(user_id=user_id, project_id=other.id)
    foreign, _ = await engine.create_counter(other_ctx, CounterCreate(name="Heel"))

    with pytest.raises(ValidationError):
        await make_counter("Rows", parent_counter_id=foreign.id)

    parent = await make_counter("Body")
    child = await make_counter("Rows", parent_counter_id=parent.id)
    children = await engine.list_children(project, parent.id)
    assert [c.id for c in children] == [child.id]


@pytest.mark.asyncio
async def test_reorder_rewrites_sort_order(engine, project, make_counter):
    a = await make_counter("A")
    b = await make_counter("B")
    c = await make_counter("C")

    ordered = await engine.reorder(project, [c.id, a.id, b.id])

    assert [counter.name for counter in ordered] == ["C", "A", "B"]
    with pytest.raises(NotFound):
        await engine.reorder(project, [a.id, uuid4()])


@pytest.mark.asyncio
async def test_visibility_flag(engine, project, make_counter):
    counter = await make_counter()
    hidden = await engine.set_visibility(project, counter.id, False)
    assert hidden.is_visible is False


@pytest.mark.asyncio
async def test_delete_requires_detaching_active_links(engine, project, make_counter):
    rows = await make_counter("Rows")
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

    with pytest.raises(ValidationError):
        await engine.delete_counter(project, repeats.id)

    await engine.delete_counter(project, repeats.id, detach_links=True)
    assert await engine.list_links(project) == []
    with pytest.raises(NotFound):
        await engine.get_counter(project, repeats.id)


@pytest.mark.asyncio
async def test_delete_removes_inactive_links_too(engine, project, make_counter):
    rows = await make_counter("Rows")
    repeats = await make_counter("Repeats")
    paused = await engine.register_link(
        project,
        CounterLinkCreate(
            source_counter_id=rows.id,
            target_counter_id=repeats.id,
            trigger_condition=TriggerCondition(operator="equals", value=1),
            action=LinkAction(type="increment"),
            is_active=False,
        ),
    )

    await engine.delete_counter(project, repeats.id)

    assert await engine.list_links(project) == []
    with pytest.raises(NotFound):
        await engine.toggle_link(project, paused.id)
    outcome = await engine.increment(project, rows.id)
    assert [counter.id for counter in outcome.changed] == [rows.id]


@pytest.mark.asyncio
async def test_sqlite_connections_enforce_foreign_keys(session_factory):
    async with session_factory() as session:
        result = await session.execute(text("PRAGMA foreign_keys"))
        assert result.scalar_one() == 1


@pytest.mark.asyncio
async def test_foreign_project_is_unauthorized(engine, project, make_counter):
    counter = await make_counter()
    intruder = ProjectContext(user_id=uuid4(), project_id=project.project_id)

    with pytest.raises(Unauthorized):
        await engine.increment(intruder, counter.id)
    with pytest.raises(Unauthorized):
        await engine.list_counters(intruder)


@pytest.mark.asyncio
async def test_unknown_counter_is_not_found(engine, project):
    with pytest.raises(NotFound):
        await engine.increment(project, uuid4())
