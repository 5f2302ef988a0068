from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete as sa_delete
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.counters import Counter
from ..models.counter import CounterModel
from ..models.counter_history import CounterHistoryModel


class CountersRepository(Protocol):
    async def add(self, project_id: UUID, values: dict[str, Any]) -> CounterModel: ...

    async def get_model(
        self,
        counter_id: UUID,
        *,
        project_id: UUID | None = None,
        for_update: bool = False,
    ) -> CounterModel | None: ...

    async def lock(self, counter_ids: Iterable[UUID]) -> None: ...

    async def list_for_project(self, project_id: UUID) -> list[Counter]: ...

    async def ids_for_project(self, project_id: UUID) -> set[UUID]: ...

    async def list_children(self, counter_id: UUID) -> list[Counter]: ...

    async def next_sort_order(self, project_id: UUID) -> int: ...

    async def set_sort_orders(self, project_id: UUID, ordered_ids: list[UUID]) -> None: ...

    async def clear_parent(self, counter_id: UUID) -> None: ...

    async def flush(self) -> None: ...

    async def delete(self, model: CounterModel) -> None: ...


class SqlAlchemyCountersRepository:
    """Counter rows; mutation methods flush and leave commit to the unit of work."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, project_id: UUID, values: dict[str, Any]) -> CounterModel:
        now = datetime.utcnow()
        model = CounterModel(project_id=project_id, created_at=now, updated_at=now, **values)
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return model

    async def get_model(
        self,
        counter_id: UUID,
        *,
        project_id: UUID | None = None,
        for_update: bool = False,
    ) -> CounterModel | None:
        query = select(CounterModel).where(CounterModel.id == counter_id)
        if project_id is not None:
            query = query.where(CounterModel.project_id == project_id)
        if for_update:
            # row lock on Postgres; SQLite ignores FOR UPDATE
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def lock(self, counter_ids: Iterable[UUID]) -> None:
        ids = sorted(counter_ids, key=str)
        if not ids:
            return
        await self._session.execute(
            select(CounterModel.id)
            .where(CounterModel.id.in_(ids))
            .order_by(CounterModel.id)
            .with_for_update()
        )

    async def list_for_project(self, project_id: UUID) -> list[Counter]:
        result = await self._session.execute(
            select(CounterModel)
            .where(CounterModel.project_id == project_id)
            .order_by(CounterModel.sort_order.asc(), CounterModel.created_at.asc())
        )
        return [Counter.model_validate(row) for row in result.scalars().all()]

    async def ids_for_project(self, project_id: UUID) -> set[UUID]:
        result = await self._session.execute(
            select(CounterModel.id).where(CounterModel.project_id == project_id)
        )
        return set(result.scalars().all())

    async def list_children(self, counter_id: UUID) -> list[Counter]:
        result = await self._session.execute(
            select(CounterModel)
            .where(CounterModel.parent_counter_id == counter_id)
            .order_by(CounterModel.sort_order.asc(), CounterModel.created_at.asc())
        )
        return [Counter.model_validate(row) for row in result.scalars().all()]

    async def next_sort_order(self, project_id: UUID) -> int:
        result = await self._session.execute(
            select(func.max(CounterModel.sort_order)).where(CounterModel.project_id == project_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def set_sort_orders(self, project_id: UUID, ordered_ids: list[UUID]) -> None:
        now = datetime.utcnow()
        for index, counter_id in enumerate(ordered_ids):
            await self._session.execute(
                update(CounterModel)
                .where(CounterModel.id == counter_id, CounterModel.project_id == project_id)
                .values(sort_order=index, updated_at=now)
            )
        await self._session.flush()

    async def clear_parent(self, counter_id: UUID) -> None:
        await self._session.execute(
            update(CounterModel)
            .where(CounterModel.parent_counter_id == counter_id)
            .values(parent_counter_id=None, updated_at=datetime.utcnow())
        )

    async def delete(self, model: CounterModel) -> None:
        # history rows go with the counter even where FK cascades are not enforced
        await self._session.execute(
            sa_delete(CounterHistoryModel).where(CounterHistoryModel.counter_id == model.id)
        )
        await self._session.delete(model)
        await self._session.flush()

    async def flush(self) -> None:
        await self._session.flush()
