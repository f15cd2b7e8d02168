# app/presence.py
"""Real-time presence relay: booking rooms and location fan-out.

Each connection goes CONNECTED -> AUTHENTICATED -> IN_ROOM -> CLOSED. Frames
that arrive before ``auth`` completes are buffered and replayed in arrival
order once the caller is known. Delivery is best effort throughout: a member
whose socket is not open is skipped, and nothing is queued or persisted.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from pydantic import ValidationError as PayloadError
from starlette.websockets import WebSocketState

from .errors import AuthenticationError
from .models import Role
from .schemas import LocationIn
from .security import Identity
from .utils import compact, now_ms

logger = logging.getLogger(__name__)

HEARTBEAT_INTERVAL = 30  # seconds
MAX_PENDING_FRAMES = 100

TokenVerifier = Callable[[Optional[str]], Identity]
JoinAuthorizer = Callable[[Identity, str], Awaitable[bool]]


class PresenceConnection:
    def __init__(self, websocket):
        self.websocket = websocket
        self.identity: Optional[Identity] = None
        self.booking_id: Optional[str] = None
        self.pending: List[Dict[str, Any]] = []
        self.auth_in_progress = False

    @property
    def user_id(self) -> Optional[str]:
        return self.identity.user_id if self.identity else None

    @property
    def role(self) -> Optional[Role]:
        return self.identity.role if self.identity else None

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    def __repr__(self) -> str:
        return f"<PresenceConnection(user={self.user_id}, booking={self.booking_id})>"


class PresenceRelay:
    def __init__(
        self,
        verify_token: TokenVerifier,
        authorize_join: Optional[JoinAuthorizer] = None,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ) -> None:
        self.verify_token = verify_token
        self.authorize_join = authorize_join
        self.heartbeat_interval = heartbeat_interval
        self.connections: Set[PresenceConnection] = set()
        self.rooms: Dict[str, Set[PresenceConnection]] = {}
        self._rooms_lock = asyncio.Lock()
        self._push_tasks: Set[asyncio.Task] = set()

    # --- connection lifecycle ---

    def register(self, websocket) -> PresenceConnection:
        conn = PresenceConnection(websocket)
        self.connections.add(conn)
        return conn

    async def disconnect(self, conn: PresenceConnection) -> None:
        self.connections.discard(conn)
        async with self._rooms_lock:
            self._leave_room(conn)

    def _leave_room(self, conn: PresenceConnection) -> None:
        # caller holds _rooms_lock
        if conn.booking_id is None:
            return
        members = self.rooms.get(conn.booking_id)
        if members is not None:
            members.discard(conn)
            if not members:
                del self.rooms[conn.booking_id]
                logger.info("Room %s closed", conn.booking_id)
        conn.booking_id = None

    # --- inbound frames ---

    async def handle_raw(self, conn: PresenceConnection, raw: str) -> None:
        """Entry point for one inbound text frame; never raises."""
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Discarding non-JSON frame from %r", conn)
            return
        if not isinstance(message, dict) or not isinstance(message.get("type"), str):
            logger.warning("Discarding frame without a type from %r", conn)
            return
        try:
            await self.dispatch(conn, message)
        except Exception:
            logger.exception("Failed to handle %s frame from %r", message.get("type"), conn)

    async def dispatch(self, conn: PresenceConnection, message: Dict[str, Any]) -> None:
        kind = message.get("type")

        if kind == "ping":
            await self._send(conn, {"type": "pong"})
            return
        if kind == "pong":
            return
        if kind == "auth":
            await self._handle_auth(conn, message.get("token"))
            return

        if conn.identity is None:
            if len(conn.pending) >= MAX_PENDING_FRAMES:
                logger.warning("Closing %r: %d frames buffered before auth", conn, len(conn.pending))
                await self._send(conn, {"type": "error", "message": "Too many messages before authentication"})
                await self._terminate(conn, code=1008)
                return
            conn.pending.append(message)
            return

        if kind == "join_booking":
            await self._handle_join(conn, message.get("bookingId"))
        elif kind == "location_update":
            await self._handle_location(conn, message.get("location"))
        else:
            logger.warning("Discarding unknown frame type %r from %r", kind, conn)

    async def _handle_auth(self, conn: PresenceConnection, token: Optional[str]) -> None:
        if conn.auth_in_progress:
            logger.debug("Ignoring duplicate auth from %r", conn)
            return
        conn.auth_in_progress = True
        try:
            try:
                identity = self.verify_token(token)
            except AuthenticationError as exc:
                logger.warning("Relay auth failed: %s", exc.message)
                await self._send(conn, {"type": "error", "message": exc.message})
                return

            if conn.identity is not None and conn.identity.user_id != identity.user_id:
                # room access was granted to the previous user
                async with self._rooms_lock:
                    self._leave_room(conn)
                logger.info("Connection re-authenticated from %s to %s", conn.user_id, identity.user_id)
            conn.identity = identity

            await self._send(
                conn,
                {
                    "type": "authenticated",
                    "userId": conn.user_id,
                    "role": conn.role.value if conn.role else None,
                },
            )
            while conn.pending:
                await self.dispatch(conn, conn.pending.pop(0))
        finally:
            conn.auth_in_progress = False

    async def _handle_join(self, conn: PresenceConnection, booking_id: Any) -> None:
        if not isinstance(booking_id, str) or not booking_id:
            await self._send(conn, {"type": "error", "message": "bookingId is required"})
            return

        if self.authorize_join is not None and not await self.authorize_join(conn.identity, booking_id):
            logger.warning("User %s refused entry to room %s", conn.user_id, booking_id)
            await self._send(conn, {"type": "error", "message": "You don't have access to this booking"})
            return

        async with self._rooms_lock:
            if conn.booking_id != booking_id:
                self._leave_room(conn)
                self.rooms.setdefault(booking_id, set()).add(conn)
                conn.booking_id = booking_id
                logger.info("User %s joined booking %s", conn.user_id, booking_id)

        await self._send(conn, {"type": "joined_booking", "bookingId": booking_id})

    async def _handle_location(self, conn: PresenceConnection, location: Any) -> None:
        if conn.booking_id is None:
            logger.warning("Discarding location from %r outside any room", conn)
            return
        try:
            loc = LocationIn.model_validate(location)
        except PayloadError:
            logger.warning("Discarding malformed location from %r", conn)
            return

        payload = {
            "type": "location_updated",
            "userId": conn.user_id,
            "role": conn.role.value if conn.role else None,
            "bookingId": conn.booking_id,
            "location": compact({**loc.model_dump(), "timestamp": now_ms()}),
        }
        for member in list(self.rooms.get(conn.booking_id, ())):
            if member is not conn:
                await self._send(member, payload)

    # --- liveness ---

    async def sweep(self) -> None:
        """Probe every connection and drop the ones that can no longer be written to.

        Clients are not required to answer ``heartbeat``. Half-open peers are
        detected by the ASGI server's protocol-level ping (uvicorn's
        ``--ws-ping-interval``), which closes the socket and leaves it for this
        sweep to clean up.
        """
        for conn in list(self.connections):
            if not await self._send(conn, {"type": "heartbeat"}):
                logger.info("Terminating unreachable connection %r", conn)
                await self._terminate(conn)

    async def run_heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Heartbeat sweep failed")

    async def _terminate(self, conn: PresenceConnection, code: int = 1001) -> None:
        try:
            await conn.websocket.close(code=code)
        except Exception as exc:
            logger.debug("Close failed for %r: %s", conn, exc)
        await self.disconnect(conn)

    # --- outbound ---

    async def _send(self, conn: PresenceConnection, payload: Dict[str, Any]) -> bool:
        if not conn.is_open:
            return False
        try:
            await conn.websocket.send_json(payload)
        except Exception as exc:
            logger.debug("Dropped frame to %r: %s", conn, exc)
            return False
        return True

    def _push(self, targets, payload: Dict[str, Any]) -> int:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return 0
        sent = 0
        for conn in targets:
            if not conn.is_open:
                continue
            task = loop.create_task(self._send(conn, payload))
            self._push_tasks.add(task)
            task.add_done_callback(self._push_tasks.discard)
            sent += 1
        return sent

    def broadcast_to_room(self, booking_id: str, payload: Dict[str, Any]) -> int:
        return self._push(list(self.rooms.get(booking_id, ())), payload)

    def broadcast_to_user(self, user_id: str, payload: Dict[str, Any]) -> int:
        return self._push([c for c in self.connections if c.user_id == user_id], payload)

    def broadcast_to_role(self, role: Role, payload: Dict[str, Any]) -> int:
        return self._push([c for c in self.connections if c.role == role], payload)
