# app/ws.py
"""WebSocket endpoint for the presence relay."""
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from . import db
from .access import can_join_booking_room
from .presence import PresenceRelay
from .security import Identity, verify_token

logger = logging.getLogger(__name__)

router = APIRouter()


async def participant_only(identity: Identity, booking_id: str) -> bool:
    if db.AsyncSessionLocal is None:
        logger.error("Room join for %s refused: database is not initialised", booking_id)
        return False
    async with db.AsyncSessionLocal() as session:
        return await can_join_booking_room(session, booking_id, identity.user_id)


relay = PresenceRelay(verify_token=verify_token, authorize_join=participant_only)


@router.websocket("/ws")
async def presence_ws(websocket: WebSocket):
    await websocket.accept()
    conn = relay.register(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            await relay.handle_raw(conn, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await relay.disconnect(conn)
