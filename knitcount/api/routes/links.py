from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ...domain.links import (
    CounterLinkCreate,
    CounterLinkListResponse,
    CounterLinkResponse,
    CounterLinkUpdate,
)
from ...domain.projects import ProjectContext
from ...services.engine import CounterEngine
from ..dependencies import get_counter_engine, get_project_context

router = APIRouter(prefix="/projects/{project_id}", tags=["links"])


@router.get("/links", response_model=CounterLinkListResponse)
async def list_links(
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterLinkListResponse:
    links = await engine.list_links(ctx)
    return CounterLinkListResponse(data=links, count=len(links))


@router.post("/links", response_model=CounterLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_link(
    payload: CounterLinkCreate,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterLinkResponse:
    return CounterLinkResponse(data=await engine.register_link(ctx, payload))


@router.get("/counters/{counter_id}/links", response_model=CounterLinkListResponse)
async def list_counter_links(
    counter_id: UUID,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterLinkListResponse:
    links = await engine.list_counter_links(ctx, counter_id)
    return CounterLinkListResponse(data=links, count=len(links))


@router.patch("/links/{link_id}", response_model=CounterLinkResponse)
async def update_link(
    link_id: UUID,
    payload: CounterLinkUpdate,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterLinkResponse:
    return CounterLinkResponse(data=await engine.update_link(ctx, link_id, payload))


@router.post("/links/{link_id}/toggle", response_model=CounterLinkResponse)
async def toggle_link(
    link_id: UUID,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterLinkResponse:
    return CounterLinkResponse(data=await engine.toggle_link(ctx, link_id))


@router.delete("/links/{link_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_link(
    link_id: UUID,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> Response:
    await engine.delete_link(ctx, link_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
