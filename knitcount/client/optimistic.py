"""Client-side optimistic counter state.

The display value of a counter changes as soon as the user acts. The server's
answer (an HTTP confirmation, a rejection, or a broadcast on the project
channel) then either promotes that value to confirmed or rolls it back.
"""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID, uuid4

import structlog

from ..domain.counters import CounterSnapshot
from ..domain.sync import CounterEvent

logger = structlog.get_logger(__name__)


class NoticeKind(str, Enum):
    ROLLED_BACK = "rolled_back"
    REMOTE_UPDATE = "remote_update"
    REMOVED = "removed"
    RESYNC_NEEDED = "resync_needed"


@dataclass(frozen=True)
class Notice:
    """Non-blocking message for the UI; never requires user acknowledgement."""

    kind: NoticeKind
    counter_id: UUID | None
    message: str


@dataclass
class _CounterView:
    confirmed: int
    displayed: int
    pending: "OrderedDict[str, int]" = field(default_factory=OrderedDict)


@dataclass(frozen=True)
class PendingMutation:
    token: str
    counter_id: UUID
    value: int


class OptimisticCounterState:
    """Local view of one project's counters for a single client."""

    def __init__(self, client_id: str | None = None) -> None:
        self.client_id = client_id or uuid4().hex
        self.last_sequence: int | None = None
        self.needs_resync = False
        self._counters: dict[UUID, _CounterView] = {}
        self._tokens: dict[str, UUID] = {}
        self._notices: deque[Notice] = deque()

    def value(self, counter_id: UUID) -> int:
        return self._view(counter_id).displayed

    def confirmed_value(self, counter_id: UUID) -> int:
        return self._view(counter_id).confirmed

    def is_pending(self, counter_id: UUID) -> bool:
        view = self._counters.get(counter_id)
        return bool(view and view.pending)

    def counter_ids(self) -> list[UUID]:
        return list(self._counters)

    def track(self, counter_id: UUID, value: int) -> None:
        """Start tracking a counter at a server-confirmed value."""

        self._counters[counter_id] = _CounterView(confirmed=value, displayed=value)

    def apply_local(self, counter_id: UUID, new_value: int) -> PendingMutation:
        view = self._view(counter_id)
        token = uuid4().hex
        view.pending[token] = new_value
        view.displayed = new_value
        self._tokens[token] = counter_id
        return PendingMutation(token=token, counter_id=counter_id, value=new_value)

    def confirm(self, token: str, server_value: int) -> None:
        counter_id = self._tokens.pop(token, None)
        if counter_id is None or counter_id not in self._counters:
            return
        view = self._counters[counter_id]
        view.pending.pop(token, None)
        view.confirmed = server_value
        if not view.pending:
            view.displayed = server_value

    def reject(self, token: str, reason: str) -> None:
        counter_id = self._tokens.pop(token, None)
        if counter_id is None or counter_id not in self._counters:
            return
        view = self._counters[counter_id]
        view.pending.pop(token, None)
        view.displayed = view.confirmed
        self._notices.append(Notice(NoticeKind.ROLLED_BACK, counter_id, reason))
        logger.info("client.mutation.rolled_back", counter_id=str(counter_id), reason=reason)

    def receive(self, event: CounterEvent) -> bool:
        """Merge a broadcast; returns False when it was stale and ignored."""

        if self.last_sequence is not None:
            if event.sequence <= self.last_sequence:
                return False
            if event.sequence > self.last_sequence + 1:
                self._flag_resync(f"Missed events {self.last_sequence + 1}..{event.sequence - 1}")
        self.last_sequence = event.sequence

        if event.action == "deleted":
            if self._counters.pop(event.counter_id, None) is not None:
                self._drop_tokens(event.counter_id)
                self._notices.append(
                    Notice(NoticeKind.REMOVED, event.counter_id, "Counter was deleted")
                )
            return True

        view = self._counters.get(event.counter_id)
        if view is None:
            self.track(event.counter_id, event.current_value)
            return True

        view.confirmed = event.current_value
        if view.pending:
            # local mutations still in flight keep their display value
            return True
        changed = view.displayed != event.current_value
        view.displayed = event.current_value
        if changed and event.origin != self.client_id:
            source = "a linked counter" if event.linked_from else "another device"
            self._notices.append(
                Notice(NoticeKind.REMOTE_UPDATE, event.counter_id, f"Updated from {source}")
            )
        return True

    def reconcile(self, snapshot: CounterSnapshot) -> None:
        """Replace all state with the server's authoritative snapshot."""

        self._counters = {
            counter.id: _CounterView(confirmed=counter.current_value, displayed=counter.current_value)
            for counter in snapshot.counters
        }
        self._tokens.clear()
        self.last_sequence = snapshot.sequence
        self.needs_resync = False

    def drain_notices(self) -> list[Notice]:
        notices = list(self._notices)
        self._notices.clear()
        return notices

    def _flag_resync(self, message: str) -> None:
        if not self.needs_resync:
            self.needs_resync = True
            self._notices.append(Notice(NoticeKind.RESYNC_NEEDED, None, message))
            logger.warning("client.sync.gap", message=message)

    def _drop_tokens(self, counter_id: UUID) -> None:
        for token in [t for t, cid in self._tokens.items() if cid == counter_id]:
            del self._tokens[token]

    def _view(self, counter_id: UUID) -> _CounterView:
        try:
            return self._counters[counter_id]
        except KeyError:
            raise KeyError(f"Counter {counter_id} is not tracked") from None
