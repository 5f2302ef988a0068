"""
Property-based tests for cascade termination on arbitrary link graphs.

Property: whatever the shape of the link graph (cycles included), one root
update changes every reachable counter exactly once and every other satisfied
edge is recorded as a cycle guard skip.
"""

import asyncio
from datetime import datetime
from uuid import uuid4

from hypothesis import given, settings, strategies as st

from knitcount.domain.counters import SkipReason, ValueMode
from knitcount.domain.links import CounterLink, LinkAction, TriggerCondition
from knitcount.services.counters import CounterStore
from knitcount.services.history import HistoryLedger
from knitcount.services.links import LinkGraph, LinkGraphEngine

from fakes import InMemoryCounters, InMemoryHistory, transient_counter


@st.composite
def graphs(draw):
    size = draw(st.integers(min_value=2, max_value=7))
    pairs = [(s, t) for s in range(size) for t in range(size) if s != t]
    edges = draw(st.lists(st.sampled_from(pairs), unique=True, max_size=len(pairs)))
    return size, edges


def _link(source, target, project_id):
    now = datetime.utcnow()
    return CounterLink(
        id=uuid4(),
        project_id=project_id,
        source_counter_id=source.id,
        target_counter_id=target.id,
        link_type="advance_together",
        trigger_condition=TriggerCondition(operator="greater_than", value=-1),
        action=LinkAction(type="increment", value=1),
        created_at=now,
        updated_at=now,
    )


@settings(max_examples=150, deadline=None)
@given(graph=graphs())
def test_cascade_visits_each_reachable_counter_once(graph):
    """
    Property: changed counters are exactly the closure of the root, each once.
    """
    size, edges = graph
    counters = [transient_counter(name=f"C{i}") for i in range(size)]
    project_id = counters[0].project_id
    link_graph = LinkGraph(_link(counters[s], counters[t], project_id) for s, t in edges)
    store = CounterStore(InMemoryCounters(counters), HistoryLedger(InMemoryHistory()))
    engine = LinkGraphEngine(links=None, store=store, max_depth=size + 1)

    async def run():
        root = await store.update_value(counters[0], ValueMode.INCREMENT)
        return await engine.run_cascade(root, link_graph)

    result = asyncio.run(run())

    changed = [change.counter_id for change in result.changes]
    assert len(changed) == len(set(changed))
    assert set(changed) == link_graph.reachable_from([counters[0].id])
    assert all(counter.current_value <= 1 for counter in counters)
    assert all(skip.reason is SkipReason.CYCLE_GUARD for skip in result.skipped)
    assert len(result.changes) - 1 + len(result.skipped) == sum(
        1 for s, _ in edges if counters[s].id in set(changed)
    )


def test_reachable_from_ignores_inactive_links():
    a, b, c = (transient_counter(name=name) for name in "ABC")
    active = _link(a, b, a.project_id)
    inactive = _link(b, c, a.project_id).model_copy(update={"is_active": False})

    graph = LinkGraph([active, inactive])

    assert graph.reachable_from([a.id]) == {a.id, b.id}
    assert len(graph) == 1
