import logging
from collections import defaultdict
from typing import Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class BillHub:
    """WebSocket rooms keyed by bill id."""

    def __init__(self):
        self.rooms: Dict[str, Set[WebSocket]] = defaultdict(set)

    async def connect(self, bill_id: str, websocket: WebSocket):
        await websocket.accept()
        self.rooms[bill_id].add(websocket)
        logger.info("WebSocket client connected to bill %s", bill_id)

    def disconnect(self, bill_id: str, websocket: WebSocket):
        room = self.rooms.get(bill_id)
        if room is None:
            return
        room.discard(websocket)
        if not room:
            del self.rooms[bill_id]
        logger.info("WebSocket client disconnected from bill %s", bill_id)

    def subscriber_count(self, bill_id: str) -> int:
        return len(self.rooms.get(bill_id, ()))

    async def publish(self, bill_id: str, message: dict):
        """Send to everyone in the room; a dead socket is dropped, not raised."""
        for websocket in list(self.rooms.get(bill_id, ())):
            try:
                await websocket.send_json(message)
            except Exception as e:
                logger.warning("Dropping WebSocket subscriber of bill %s: %r", bill_id, e)
                self.disconnect(bill_id, websocket)


hub = BillHub()
