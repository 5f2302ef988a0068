from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends

from ...domain.counters import CounterMutationResponse, CounterValueRequest
from ...domain.history import CounterHistoryListResponse
from ...domain.pagination import PaginationParams
from ...domain.projects import ProjectContext
from ...services.engine import CounterEngine
from ..dependencies import get_counter_engine, get_pagination_params, get_project_context

router = APIRouter(
    prefix="/projects/{project_id}/counters/{counter_id}/history", tags=["history"]
)


@router.get("", response_model=CounterHistoryListResponse)
async def list_history(
    counter_id: UUID,
    pagination: PaginationParams = Depends(get_pagination_params),
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterHistoryListResponse:
    entries, meta = await engine.history_page(ctx, counter_id, pagination)
    return CounterHistoryListResponse(data=entries, count=len(entries), pagination=meta)


@router.post("/{history_id}/undo", response_model=CounterMutationResponse)
async def undo_history_entry(
    counter_id: UUID,
    history_id: UUID,
    payload: CounterValueRequest | None = None,
    ctx: ProjectContext = Depends(get_project_context),
    engine: CounterEngine = Depends(get_counter_engine),
) -> CounterMutationResponse:
    origin = payload.origin if payload is not None else None
    outcome = await engine.undo(ctx, counter_id, history_id, origin=origin)
    return outcome.to_response()
