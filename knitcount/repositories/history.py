from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.history import CounterHistory, HistoryAction
from ..models.counter_history import CounterHistoryModel


class CounterHistoryRepository(Protocol):
    async def append(
        self,
        *,
        counter_id: UUID,
        old_value: int,
        new_value: int,
        action: HistoryAction,
        user_note: str | None = None,
        link_id: UUID | None = None,
    ) -> CounterHistory: ...

    async def get(self, history_id: UUID, counter_id: UUID) -> CounterHistory | None: ...

    async def list_for_counter(
        self,
        counter_id: UUID,
        *,
        limit: int,
        offset: int = 0,
        before_sequence: int | None = None,
    ) -> list[CounterHistory]: ...

    async def count_for_counter(self, counter_id: UUID) -> int: ...


class SqlAlchemyCounterHistoryRepository:
    """Insert-only access to the counter history ledger."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        *,
        counter_id: UUID,
        old_value: int,
        new_value: int,
        action: HistoryAction,
        user_note: str | None = None,
        link_id: UUID | None = None,
    ) -> CounterHistory:
        # callers hold the counter lock, so max()+1 cannot race
        result = await self._session.execute(
            select(func.max(CounterHistoryModel.sequence)).where(
                CounterHistoryModel.counter_id == counter_id
            )
        )
        last = result.scalar_one_or_none()
        model = CounterHistoryModel(
            counter_id=counter_id,
            sequence=1 if last is None else last + 1,
            old_value=old_value,
            new_value=new_value,
            action=action.value,
            user_note=user_note,
            link_id=link_id,
            created_at=datetime.utcnow(),
        )
        self._session.add(model)
        await self._session.flush()
        return CounterHistory.model_validate(model)

    async def get(self, history_id: UUID, counter_id: UUID) -> CounterHistory | None:
        result = await self._session.execute(
            select(CounterHistoryModel).where(
                CounterHistoryModel.id == history_id,
                CounterHistoryModel.counter_id == counter_id,
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return CounterHistory.model_validate(model)

    async def list_for_counter(
        self,
        counter_id: UUID,
        *,
        limit: int,
        offset: int = 0,
        before_sequence: int | None = None,
    ) -> list[CounterHistory]:
        """Newest-first entries; ``before_sequence`` pages by key instead of offset."""

        query = select(CounterHistoryModel).where(CounterHistoryModel.counter_id == counter_id)
        if before_sequence is not None:
            query = query.where(CounterHistoryModel.sequence < before_sequence)
        result = await self._session.execute(
            query.order_by(CounterHistoryModel.sequence.desc()).limit(limit).offset(offset)
        )
        return [CounterHistory.model_validate(row) for row in result.scalars().all()]

    async def count_for_counter(self, counter_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(CounterHistoryModel)
            .where(CounterHistoryModel.counter_id == counter_id)
        )
        return int(result.scalar_one())
