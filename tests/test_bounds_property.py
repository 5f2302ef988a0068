"""
Property-based tests for counter bounds.

Property: for any sequence of value operations, a counter never leaves
[min_value, max_value]; a rejected operation leaves value and tally untouched
and writes no history.
"""

import asyncio

from hypothesis import given, settings, strategies as st

from knitcount.core.errors import BoundsExceeded
from knitcount.domain.counters import ValueMode
from knitcount.services.counters import CounterStore
from knitcount.services.history import HistoryLedger

from fakes import InMemoryCounters, InMemoryHistory, transient_counter


operation_strategy = st.one_of(
    st.tuples(st.just(ValueMode.INCREMENT), st.none() | st.integers(min_value=0, max_value=7)),
    st.tuples(st.just(ValueMode.DECREMENT), st.none() | st.integers(min_value=0, max_value=7)),
    st.tuples(st.just(ValueMode.SET), st.integers(min_value=-10, max_value=40)),
    st.tuples(st.just(ValueMode.RESET), st.none()),
)

pattern_strategy = st.sampled_from(
    [None, {"type": "every_n", "n": 3}, {"type": "custom", "steps": [1, 2]}]
)


@settings(max_examples=150, deadline=None)
@given(
    min_value=st.integers(min_value=0, max_value=5),
    span=st.integers(min_value=0, max_value=25),
    increment_by=st.integers(min_value=1, max_value=4),
    pattern=pattern_strategy,
    operations=st.lists(operation_strategy, max_size=30),
)
def test_value_never_leaves_bounds(min_value, span, increment_by, pattern, operations):
    """
    Property: every committed value stays within bounds and rejected
    operations change nothing.
    """
    history = InMemoryHistory()
    store = CounterStore(InMemoryCounters(), HistoryLedger(history))
    counter = transient_counter(
        current_value=min_value,
        min_value=min_value,
        max_value=min_value + span,
        increment_by=increment_by,
        increment_pattern=pattern,
    )

    async def run():
        for mode, amount in operations:
            before = (counter.current_value, counter.pattern_tally, len(history.entries))
            try:
                await store.update_value(counter, mode, amount)
            except BoundsExceeded:
                assert (counter.current_value, counter.pattern_tally, len(history.entries)) == before
            assert counter.min_value <= counter.current_value <= counter.max_value

    asyncio.run(run())

    for previous, current in zip(history.entries, history.entries[1:]):
        assert current.old_value == previous.new_value
