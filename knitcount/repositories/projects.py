from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.projects import Project, ProjectCreate
from ..models.project import ProjectModel


class ProjectsRepository(Protocol):
    async def create(self, user_id: UUID, payload: ProjectCreate) -> Project: ...

    async def get(self, project_id: UUID) -> Project | None: ...

    async def get_owned(self, project_id: UUID, user_id: UUID) -> Project | None: ...


class SqlAlchemyProjectsRepository:
    """Projects repository backed by SQLAlchemy. Callers own the transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, user_id: UUID, payload: ProjectCreate) -> Project:
        model = ProjectModel(user_id=user_id, **payload.model_dump())
        self._session.add(model)
        await self._session.flush()
        await self._session.refresh(model)
        return Project.model_validate(model)

    async def get(self, project_id: UUID) -> Project | None:
        model = await self._session.get(ProjectModel, project_id)
        if model is None:
            return None
        return Project.model_validate(model)

    async def get_owned(self, project_id: UUID, user_id: UUID) -> Project | None:
        result = await self._session.execute(
            select(ProjectModel).where(
                ProjectModel.id == project_id,
                ProjectModel.user_id == user_id,
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            return None
        return Project.model_validate(model)
