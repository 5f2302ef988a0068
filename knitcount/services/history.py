"""Append-only history ledger for counter value transitions."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import TYPE_CHECKING
from uuid import UUID

import structlog

from ..core.errors import NotFound
from ..domain.counters import ValueMode
from ..domain.history import CounterHistory, HistoryAction
from ..domain.pagination import PaginationMeta, PaginationParams
from ..repositories.history import CounterHistoryRepository

if TYPE_CHECKING:
    from ..models.counter import CounterModel
    from .counters import CounterStore, ValueChange

logger = structlog.get_logger(__name__)


class HistoryLedger:
    """Writes and reads ledger entries inside the caller's unit of work.

    Entries are never updated or deleted. An undo is recorded as a new entry,
    so the ledger always replays to the counter's current value.
    """

    def __init__(self, repository: CounterHistoryRepository) -> None:
        self._repository = repository

    async def append(
        self,
        counter_id: UUID,
        old_value: int,
        new_value: int,
        action: HistoryAction,
        note: str | None = None,
        *,
        link_id: UUID | None = None,
    ) -> CounterHistory:
        entry = await self._repository.append(
            counter_id=counter_id,
            old_value=old_value,
            new_value=new_value,
            action=action,
            user_note=note,
            link_id=link_id,
        )
        logger.debug(
            "counter.history.appended",
            counter_id=str(counter_id),
            sequence=entry.sequence,
            action=action.value,
            old_value=old_value,
            new_value=new_value,
        )
        return entry

    async def get(self, history_id: UUID, counter_id: UUID) -> CounterHistory:
        entry = await self._repository.get(history_id, counter_id)
        if entry is None:
            raise NotFound("History entry not found")
        return entry

    async def list_for(self, counter_id: UUID, page_size: int = 50) -> AsyncIterator[CounterHistory]:
        """Yield entries newest-first, fetching one page at a time.

        Each call starts again from the newest entry. Pages continue below the
        last sequence seen, so entries appended meanwhile are neither repeated
        nor shift the window.
        """

        before: int | None = None
        while True:
            page = await self._repository.list_for_counter(
                counter_id, limit=page_size, before_sequence=before
            )
            for entry in page:
                yield entry
            if len(page) < page_size:
                return
            before = page[-1].sequence

    async def page(
        self, counter_id: UUID, params: PaginationParams
    ) -> tuple[list[CounterHistory], PaginationMeta]:
        total = await self._repository.count_for_counter(counter_id)
        entries = await self._repository.list_for_counter(
            counter_id, limit=params.limit, offset=params.offset
        )
        return entries, PaginationMeta.for_window(params, len(entries), total)

    async def undo(
        self, history_id: UUID, counter: CounterModel, store: CounterStore
    ) -> ValueChange:
        """Revert ``counter`` to the ``old_value`` recorded in ``history_id``.

        The reverted entry stays untouched; the reversion itself is a new
        ``undo`` entry. Bounds are enforced against the counter's current limits.
        """

        entry = await self.get(history_id, counter.id)
        change = await store.update_value(
            counter,
            ValueMode.UNDO,
            entry.old_value,
            note=f"Undo to history entry {history_id}",
        )
        logger.info(
            "counter.history.undo",
            counter_id=str(counter.id),
            history_id=str(history_id),
            restored_value=entry.old_value,
        )
        return change
