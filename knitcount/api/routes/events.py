from __future__ import annotations

import asyncio
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder

from ...core.errors import Unauthorized
from ...domain.projects import ProjectContext
from ...services.counter_events import Subscription
from ...services.engine import CounterEngine
from ..dependencies import get_counter_engine, get_user_id_from_websocket

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/projects", tags=["events"])


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


async def _forward_updates(websocket: WebSocket, subscription: Subscription) -> None:
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        while True:
            next_event = asyncio.create_task(subscription.get())
            done, _ = await asyncio.wait(
                {next_event, disconnect}, return_when=asyncio.FIRST_COMPLETED
            )
            if disconnect in done:
                next_event.cancel()
                return
            await websocket.send_json(
                {"event": "update", "data": jsonable_encoder(next_event.result(), exclude_none=True)}
            )
    finally:
        disconnect.cancel()


@router.websocket("/{project_id}/events")
async def stream_counter_events(
    websocket: WebSocket,
    project_id: UUID,
    engine: CounterEngine = Depends(get_counter_engine),
):
    try:
        user_id = await get_user_id_from_websocket(websocket)
    except HTTPException:
        return

    try:
        subscription = await engine.broker.subscribe(project_id, user_id)
    except Unauthorized as exc:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
        return

    async with subscription:
        await websocket.accept()
        # subscribed before the snapshot is read, so nothing falls in between
        snapshot = await engine.snapshot(ProjectContext(user_id=user_id, project_id=project_id))
        await websocket.send_json({"event": "snapshot", "data": jsonable_encoder(snapshot)})
        try:
            await _forward_updates(websocket, subscription)
        except WebSocketDisconnect:
            pass
    logger.debug("sync.websocket.closed", project_id=str(project_id), user_id=str(user_id))
