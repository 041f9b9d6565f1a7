import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from app.realtime.hub import hub

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket("/ws/{bill_id}")
async def bill_updates(websocket: WebSocket, bill_id: str):
    """Live payment updates for one bill"""
    await hub.connect(bill_id, websocket)
    try:
        while True:
            data = await websocket.receive_json()
            if isinstance(data, dict) and data.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    except ValueError:
        logger.warning("Malformed WebSocket message on bill %s", bill_id)
    finally:
        hub.disconnect(bill_id, websocket)
