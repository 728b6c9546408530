"""WebSocket endpoint — live chat rooms and request updates.

Learn: Each browser tab connects once to /ws/chat?token=JWT. The handler:
1. Authenticates via JWT query param (closes with 4001 otherwise)
2. Registers the connection with the broker under its user
3. Handles client events as they arrive:
   - join_chat  {match_id}  → join that match's room (participants only)
   - leave_chat {match_id}  → leave it
   - ping                   → pong
4. Unregisters on disconnect, which drops every room membership

Messages are NOT sent over the socket — clients POST /messages and the
service relays the persisted row back as receive_message. That keeps one
write path with one authorization check.
"""

import json
import uuid
from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from helpmatch.auth.dependencies import identity_from_token
from helpmatch.auth.jwt import TokenError
from helpmatch.db.engine import get_session_factory
from helpmatch.events.store import EventStore
from helpmatch.realtime.broker import ChannelBroker, get_broker
from helpmatch.services.errors import AuthorizationError, NotFoundError
from helpmatch.services.match_service import MatchService

logger = structlog.get_logger()
router = APIRouter()


class ChatConnection:
    """Broker handle for one accepted WebSocket."""

    def __init__(self, websocket: WebSocket, user_id: uuid.UUID):
        self.websocket = websocket
        self.user_id = user_id

    async def send_json(self, payload: dict) -> None:
        await self.websocket.send_json(payload)


def _match_id_of(msg: dict) -> int | None:
    raw = msg.get("match_id", msg.get("matchId"))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@router.websocket("/ws/chat")
async def chat_websocket(
    websocket: WebSocket,
    broker: ChannelBroker = Depends(get_broker),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """WebSocket endpoint for chat rooms and request notifications."""
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001, reason="Authentication required")
        return
    try:
        identity = identity_from_token(token)
    except TokenError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    conn = ChatConnection(websocket, identity.user_id)
    broker.register(conn)
    logger.info("ws.connected", user_id=str(identity.user_id))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            data = message.get("text")
            if data is None:
                await conn.send_json({"type": "error", "detail": "Expected a text frame"})
                continue
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await conn.send_json({"type": "error", "detail": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await conn.send_json({"type": "error", "detail": "Expected an object"})
                continue
            await _handle_client_event(conn, msg, broker, session_factory)
    except WebSocketDisconnect:
        pass
    finally:
        broker.unregister(conn)
        logger.info("ws.disconnected", user_id=str(identity.user_id))


async def _handle_client_event(
    conn: ChatConnection,
    msg: dict[str, Any],
    broker: ChannelBroker,
    session_factory: async_sessionmaker,
) -> None:
    event_type = msg.get("type")

    if event_type == "ping":
        await conn.send_json({"type": "pong"})
        return

    if event_type not in ("join_chat", "leave_chat"):
        await conn.send_json(
            {"type": "error", "detail": f"Unknown event type: {event_type}"}
        )
        return

    match_id = _match_id_of(msg)
    if match_id is None:
        await conn.send_json(
            {"type": "error", "event": event_type, "detail": "match_id is required"}
        )
        return

    if event_type == "leave_chat":
        broker.leave_room(conn, match_id)
        await conn.send_json({"type": "left", "match_id": match_id})
        return

    # join_chat: only the two participants may listen in
    async with session_factory() as db:
        try:
            await MatchService(db, EventStore(db)).require_participant(
                match_id, conn.user_id
            )
        except (NotFoundError, AuthorizationError) as e:
            logger.warning(
                "ws.join_rejected",
                match_id=match_id,
                user_id=str(conn.user_id),
                reason=type(e).__name__,
            )
            await conn.send_json(
                {"type": "error", "event": "join_chat", "match_id": match_id, "detail": str(e)}
            )
            return

    broker.join_room(match_id, conn)
    await conn.send_json({"type": "joined", "match_id": match_id})
