from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from rollcall.services.events import broadcaster

router = APIRouter()


@router.websocket("/ws")
async def events(websocket: WebSocket):
    await broadcaster.connect(websocket)
    try:
        while True:
            text = await websocket.receive_text()
            if text.strip().lower() == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.disconnect(websocket)
