from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from connection_manager import manager, room_channel, phase_channel

router = APIRouter(tags=["websocket"])


async def _listen(websocket: WebSocket, channel: str):
    async with manager.subscribe(websocket, channel):
        try:
            while True:
                # We mostly push FROM server; clients may send a keepalive ping
                data = await websocket.receive_text()
                if data == "ping":
                    await websocket.send_text("pong")
        except WebSocketDisconnect:
            pass

@router.websocket("/ws/{room_id}")
async def room_events(websocket: WebSocket, room_id: str):
    await _listen(websocket, room_channel(room_id.upper()))

@router.websocket("/ws/{room_id}/phase")
async def phase_events(websocket: WebSocket, room_id: str):
    await _listen(websocket, phase_channel(room_id.upper()))
