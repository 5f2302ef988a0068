from __future__ import annotations

from uuid import UUID

from fastapi import Depends, HTTPException, Query, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.config import get_settings
from ..core.errors import Unauthorized
from ..core.security import user_id_from_token
from ..db import get_sessionmaker
from ..domain.pagination import PaginationParams
from ..domain.projects import ProjectContext
from ..services.counter_events import CounterEventBroker
from ..services.engine import CounterEngine

_http_bearer = HTTPBearer(auto_error=False)
_counter_events: CounterEventBroker | None = None
_counter_engine: CounterEngine | None = None


async def get_counter_event_broker() -> CounterEventBroker:
    global _counter_events
    if _counter_events is None:
        _counter_events = CounterEventBroker(maxsize=get_settings().sync_queue_maxsize)
    return _counter_events


async def get_counter_engine(
    broker: CounterEventBroker = Depends(get_counter_event_broker),
) -> CounterEngine:
    global _counter_engine
    if _counter_engine is None:
        _counter_engine = CounterEngine(get_sessionmaker(), broker)
    return _counter_engine


async def get_pagination_params(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    return PaginationParams(limit=limit, offset=offset)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_http_bearer),
) -> UUID:
    token = credentials.credentials if credentials is not None else None
    try:
        return user_id_from_token(token)
    except Unauthorized as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc


async def get_project_context(
    project_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
) -> ProjectContext:
    """Bind the verified caller to the project named in the path.

    Ownership itself is checked by the engine inside each unit of work.
    """

    return ProjectContext(user_id=user_id, project_id=project_id)


async def get_user_id_from_websocket(websocket: WebSocket) -> UUID:
    token = None
    auth_header = websocket.headers.get("Authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
    if token is None:
        token = websocket.query_params.get("token")
    try:
        return user_id_from_token(token)
    except Unauthorized as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        ) from exc


def reset_dependencies() -> None:
    """Forget the cached broker and engine, e.g. after the database is swapped."""

    global _counter_events, _counter_engine
    _counter_events = None
    _counter_engine = None
