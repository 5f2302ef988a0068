from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ...domain.counters import (
    CounterActiveRequest,
    CounterCreate,
    CounterListResponse,
    CounterMutationResponse,
    CounterReorderRequest,
    CounterResponse,
    CounterSnapshot,
    CounterUpdate,
    CounterValueRequest,
    CounterVisibilityRequest,
    ValueMode,
)
from ...domain.projects import ProjectContext
from ...services.engine import CounterEngine
from ..dependencies import get_counter_engine, get_project_context

router = APIRouter(prefix="/projects/{project_id}/counters", tags=["counters"])


@router.get("", response_model=CounterListResponse)
async def list_counters(
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterListResponse:
    counters = await engine.list_counters(ctx)
    return CounterListResponse(data=counters, count=len(counters))


@router.post("", response_model=CounterResponse, status_code=status.HTTP_201_CREATED)
async def create_counter(
    payload: CounterCreate,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterResponse:
    counter, _ = await engine.create_counter(ctx, payload)
    return CounterResponse(data=counter)


@router.get("/snapshot", response_model=CounterSnapshot)
async def get_snapshot(
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterSnapshot:
    return await engine.snapshot(ctx)


@router.put("/order", response_model=CounterListResponse)
async def reorder_counters(
    payload: CounterReorderRequest,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterListResponse:
    counters = await engine.reorder(ctx, payload.counter_ids)
    return CounterListResponse(data=counters, count=len(counters))


@router.get("/{counter_id}", response_model=CounterResponse)
async def get_counter(
    counter_id: UUID,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterResponse:
    return CounterResponse(data=await engine.get_counter(ctx, counter_id))


@router.get("/{counter_id}/children", response_model=CounterListResponse)
async def list_children(
    counter_id: UUID,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterListResponse:
    counters = await engine.list_children(ctx, counter_id)
    return CounterListResponse(data=counters, count=len(counters))


@router.patch("/{counter_id}", response_model=CounterResponse)
async def update_counter(
    counter_id: UUID,
    payload: CounterUpdate,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterResponse:
    return CounterResponse(data=await engine.update_counter(ctx, counter_id, payload))


@router.delete("/{counter_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_counter(
    counter_id: UUID,
    detach_links: bool = Query(default=False),
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> Response:
    await engine.delete_counter(ctx, counter_id, detach_links=detach_links)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


async def _apply_value(
    mode: ValueMode,
    counter_id: UUID,
    payload: CounterValueRequest,
    ctx: ProjectContext,
    engine: CounterEngine,
) -> CounterMutationResponse:
    outcome = await engine.update_value(
        ctx, counter_id, mode, payload.amount, payload.note, origin=payload.origin
    )
    return outcome.to_response()


@router.post("/{counter_id}/increment", response_model=CounterMutationResponse)
async def increment_counter(
    counter_id: UUID,
    payload: CounterValueRequest | None = None,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterMutationResponse:
    return await _apply_value(
        ValueMode.INCREMENT, counter_id, payload or CounterValueRequest(), ctx, engine
    )


@router.post("/{counter_id}/decrement", response_model=CounterMutationResponse)
async def decrement_counter(
    counter_id: UUID,
    payload: CounterValueRequest | None = None,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterMutationResponse:
    return await _apply_value(
        ValueMode.DECREMENT, counter_id, payload or CounterValueRequest(), ctx, engine
    )


@router.post("/{counter_id}/reset", response_model=CounterMutationResponse)
async def reset_counter(
    counter_id: UUID,
    payload: CounterValueRequest | None = None,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterMutationResponse:
    return await _apply_value(
        ValueMode.RESET, counter_id, payload or CounterValueRequest(), ctx, engine
    )


@router.post("/{counter_id}/set", response_model=CounterMutationResponse)
async def set_counter(
    counter_id: UUID,
    payload: CounterValueRequest,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterMutationResponse:
    return await _apply_value(ValueMode.SET, counter_id, payload, ctx, engine)


@router.patch("/{counter_id}/visibility", response_model=CounterResponse)
async def set_visibility(
    counter_id: UUID,
    payload: CounterVisibilityRequest,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterResponse:
    return CounterResponse(data=await engine.set_visibility(ctx, counter_id, payload.is_visible))


@router.patch("/{counter_id}/active", response_model=CounterResponse)
async def set_active(
    counter_id: UUID,
    payload: CounterActiveRequest,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterResponse:
    return CounterResponse(data=await engine.set_active(ctx, counter_id, payload.is_active))
