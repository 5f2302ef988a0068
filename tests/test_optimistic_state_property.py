"""
Property-based tests for the client's optimistic counter state.

Property: local changes are provisional. Whatever mix of local mutations,
confirmations and rejections happens, once nothing is pending the displayed
value equals the last value the server confirmed.
"""

from datetime import datetime
from uuid import uuid4

from hypothesis import given, settings, strategies as st

from knitcount.client.optimistic import NoticeKind, OptimisticCounterState
from knitcount.domain.counters import Counter, CounterSnapshot
from knitcount.domain.sync import CounterEvent

COUNTER_ID = uuid4()
PROJECT_ID = uuid4()


def _event(sequence, value, *, origin=None, action="increment", linked_from=None):
    return CounterEvent(
        project_id=PROJECT_ID,
        counter_id=COUNTER_ID,
        current_value=value,
        action=action,
        sequence=sequence,
        origin=origin,
        linked_from=linked_from,
    )


def _snapshot(sequence, values):
    now = datetime.utcnow()
    return CounterSnapshot(
        project_id=PROJECT_ID,
        sequence=sequence,
        counters=[
            Counter(
                id=counter_id,
                project_id=PROJECT_ID,
                name="Rows",
                current_value=value,
                created_at=now,
                updated_at=now,
            )
            for counter_id, value in values.items()
        ],
    )


step_strategy = st.lists(
    st.tuples(
        st.integers(min_value=-5, max_value=5),
        st.booleans(),
        st.integers(min_value=0, max_value=100),
    ),
    max_size=20,
)


@settings(max_examples=200)
@given(start=st.integers(min_value=0, max_value=50), steps=step_strategy)
def test_settled_state_shows_last_server_value(start, steps):
    """
    Property: after every pending mutation is confirmed or rejected the
    displayed value is the last confirmed server value.
    """
    state = OptimisticCounterState()
    state.track(COUNTER_ID, start)
    pending = []
    for delta, accepted, server_value in steps:
        mutation = state.apply_local(COUNTER_ID, state.value(COUNTER_ID) + delta)
        pending.append((mutation, accepted, server_value))

    confirmed = start
    for mutation, accepted, server_value in pending:
        if accepted:
            state.confirm(mutation.token, server_value)
            confirmed = server_value
        else:
            state.reject(mutation.token, "Cannot exceed maximum value")

    assert not state.is_pending(COUNTER_ID)
    assert state.value(COUNTER_ID) == confirmed
    rejections = [n for n in state.drain_notices() if n.kind is NoticeKind.ROLLED_BACK]
    assert len(rejections) == sum(1 for _, accepted, _ in steps if not accepted)


@settings(max_examples=100)
@given(sequences=st.lists(st.integers(min_value=1, max_value=30), min_size=1, max_size=25))
def test_stale_events_never_move_backwards(sequences):
    """
    Property: the applied sequence only increases and a jump flags a resync.
    """
    state = OptimisticCounterState()
    state.reconcile(_snapshot(0, {COUNTER_ID: 0}))
    applied = []
    for sequence in sequences:
        if state.receive(_event(sequence, sequence)):
            applied.append(sequence)

    assert applied == sorted(set(applied))
    assert state.value(COUNTER_ID) == applied[-1]
    expected_gap = any(b - a > 1 for a, b in zip([0] + applied, applied))
    assert state.needs_resync is expected_gap


def test_rejection_rolls_back_and_notifies():
    state = OptimisticCounterState()
    state.track(COUNTER_ID, 10)
    mutation = state.apply_local(COUNTER_ID, 11)
    assert state.value(COUNTER_ID) == 11

    state.reject(mutation.token, "Cannot exceed maximum value of 10")

    assert state.value(COUNTER_ID) == 10
    [notice] = state.drain_notices()
    assert notice.kind is NoticeKind.ROLLED_BACK
    assert notice.message == "Cannot exceed maximum value of 10"


def test_remote_update_replaces_value_with_passive_notice():
    state = OptimisticCounterState()
    state.reconcile(_snapshot(3, {COUNTER_ID: 4}))

    state.receive(_event(4, 9, origin="tablet"))

    assert state.value(COUNTER_ID) == 9
    [notice] = state.drain_notices()
    assert notice.kind is NoticeKind.REMOTE_UPDATE


def test_own_broadcast_is_confirmation_without_notice():
    state = OptimisticCounterState(client_id="phone")
    state.reconcile(_snapshot(0, {COUNTER_ID: 1}))

    state.receive(_event(1, 2, origin="phone"))

    assert state.confirmed_value(COUNTER_ID) == 2
    assert state.drain_notices() == []


def test_broadcast_does_not_clobber_pending_local_value():
    state = OptimisticCounterState()
    state.reconcile(_snapshot(0, {COUNTER_ID: 1}))
    mutation = state.apply_local(COUNTER_ID, 2)

    state.receive(_event(1, 5, origin="tablet"))
    assert state.value(COUNTER_ID) == 2

    state.reject(mutation.token, "rejected")
    assert state.value(COUNTER_ID) == 5


def test_reconcile_clears_pending_and_resync_flag():
    state = OptimisticCounterState()
    state.reconcile(_snapshot(1, {COUNTER_ID: 1}))
    state.apply_local(COUNTER_ID, 2)
    state.receive(_event(5, 7))
    assert state.needs_resync

    state.reconcile(_snapshot(6, {COUNTER_ID: 8}))

    assert not state.needs_resync
    assert not state.is_pending(COUNTER_ID)
    assert state.value(COUNTER_ID) == 8
    assert state.last_sequence == 6


def test_deleted_counter_is_dropped():
    state = OptimisticCounterState()
    state.reconcile(_snapshot(0, {COUNTER_ID: 3}))

    state.receive(_event(1, 3, action="deleted"))

    assert COUNTER_ID not in state.counter_ids()
    assert [n.kind for n in state.drain_notices()] == [NoticeKind.REMOVED]
