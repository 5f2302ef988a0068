from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, status

from ...domain.projects import ProjectContext, ProjectCreate, ProjectResponse
from ...services.engine import CounterEngine
from ..dependencies import get_counter_engine, get_current_user_id, get_project_context

router = APIRouter(prefix="/projects", tags=["projects"])


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    user_id: UUID = Depends(get_current_user_id),
    engine: CounterEngine = Depends(get_counter_engine),
) -> ProjectResponse:
    project = await engine.create_project(user_id, payload)
    return ProjectResponse(data=project)


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> ProjectResponse:
    return ProjectResponse(data=await engine.get_project(ctx))
