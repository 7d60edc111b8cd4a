from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws/events")
async def shell_events_ws(websocket: WebSocket, session_id: Optional[str] = None):
    """Stream shell events, optionally only those of one session."""
    bus = websocket.app.state.manager.events
    # Subscribe before accepting so nothing published after the handshake is missed.
    q = bus.subscribe()

    try:
        await websocket.accept()
        while True:
            event = await q.get()
            if session_id is not None and event.session_id != session_id:
                continue
            await websocket.send_json(event.to_dict())
    except WebSocketDisconnect:
        pass
    finally:
        bus.unsubscribe(q)
