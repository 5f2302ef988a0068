from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.links import CounterLink
from ..models.counter_link import CounterLinkModel


class CounterLinksRepository(Protocol):
    async def add(self, project_id: UUID, values: dict[str, Any]) -> CounterLink: ...

    async def get_model(self, link_id: UUID, project_id: UUID) -> CounterLinkModel | None: ...

    async def find_pair(self, source_id: UUID, target_id: UUID) -> CounterLink | None: ...

    async def list_for_project(
        self, project_id: UUID, *, active_only: bool = False
    ) -> list[CounterLink]: ...

    async def list_for_counter(self, counter_id: UUID) -> list[CounterLink]: ...

    async def save(self, model: CounterLinkModel, changes: dict[str, Any]) -> CounterLink: ...

    async def delete(self, model: CounterLinkModel) -> None: ...

    async def delete_for_counter(self, counter_id: UUID) -> int: ...


class SqlAlchemyCounterLinksRepository:
    """Counter link rows; callers own the transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, project_id: UUID, values: dict[str, Any]) -> CounterLink:
        now = datetime.utcnow()
        model = CounterLinkModel(project_id=project_id, created_at=now, updated_at=now, **values)
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return CounterLink.model_validate(model)

    async def get_model(self, link_id: UUID, project_id: UUID) -> CounterLinkModel | None:
        result = await self._session.execute(
            select(CounterLinkModel).where(
                CounterLinkModel.id == link_id,
                CounterLinkModel.project_id == project_id,
            )
        )
        return result.scalar_one_or_none()

    async def find_pair(self, source_id: UUID, target_id: UUID) -> CounterLink | None:
        result = await self._session.execute(
            select(CounterLinkModel).where(
                CounterLinkModel.source_counter_id == source_id,
                CounterLinkModel.target_counter_id == target_id,
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return CounterLink.model_validate(model)

    async def list_for_project(
        self, project_id: UUID, *, active_only: bool = False
    ) -> list[CounterLink]:
        query = select(CounterLinkModel).where(CounterLinkModel.project_id == project_id)
        if active_only:
            query = query.where(CounterLinkModel.is_active.is_(True))
        # creation order is the cascade evaluation order
        query = query.order_by(CounterLinkModel.created_at.asc(), CounterLinkModel.id.asc())
        result = await self._session.execute(query)
        return [CounterLink.model_validate(row) for row in result.scalars().all()]

    async def list_for_counter(self, counter_id: UUID) -> list[CounterLink]:
        result = await self._session.execute(
            select(CounterLinkModel)
            .where(
                or_(
                    CounterLinkModel.source_counter_id == counter_id,
                    CounterLinkModel.target_counter_id == counter_id,
                )
            )
            .order_by(CounterLinkModel.created_at.desc())
        )
        return [CounterLink.model_validate(row) for row in result.scalars().all()]

    async def save(self, model: CounterLinkModel, changes: dict[str, Any]) -> CounterLink:
        for key, value in changes.items():
            setattr(model, key, value)
        model.updated_at = datetime.utcnow()
        await self._session.flush()
        return CounterLink.model_validate(model)

    async def delete(self, model: CounterLinkModel) -> None:
        await self._session.delete(model)
        await self._session.flush()

    async def delete_for_counter(self, counter_id: UUID) -> int:
        result = await self._session.execute(
            delete(CounterLinkModel).where(
                or_(
                    CounterLinkModel.source_counter_id == counter_id,
                    CounterLinkModel.target_counter_id == counter_id,
                )
            )
        )
        return result.rowcount or 0
