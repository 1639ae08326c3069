from __future__ import annotations

from contextlib import aclosing

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from autobuild.dependencies import OrchestratorDep

router = APIRouter()


@router.websocket("/ws/build/{project_id}")
async def build_updates(
    websocket: WebSocket,
    project_id: str,
    orchestrator: OrchestratorDep,
) -> None:
    await websocket.accept()

    try:
        async with aclosing(orchestrator.watch(project_id)) as events:
            async for event in events:
                await websocket.send_json(event.model_dump(mode="json"))
    except WebSocketDisconnect:
        return

    await websocket.close()
