"""Channel broker — per-match chat rooms of live WebSocket connections.

Learn: The broker is the ONLY owner of room membership. Nothing else keeps
socket bookkeeping; the WebSocket endpoint and the services talk to it
through register/join/leave/broadcast/notify.

Two indexes are kept in memory:
- rooms:   match_id → connections currently joined to that chat
- by_user: user_id  → every live connection of that user (for request
           status pushes, which are not tied to a room)

Delivery is best-effort and at-most-once per connection. A connection that
joins after a broadcast never sees it retroactively — clients reload
history from GET /messages/{match_id}. Membership is process-local and
lost on restart; messages are not, they live in the database.

A connection handle is any object with a `user_id` attribute and an async
`send_json(payload)` method (see realtime.websocket.ChatConnection).
"""

import asyncio
import uuid
from typing import Any, Optional

import structlog

logger = structlog.get_logger()


class ChannelBroker:
    """In-process room registry and fan-out."""

    def __init__(self, instance_id: Optional[str] = None):
        # Tags events we publish to Redis so we can skip our own echoes
        self.instance_id = instance_id or uuid.uuid4().hex
        self.relay = None  # RedisRelay, attached in lifespan when Redis is up
        self._rooms: dict[int, set[Any]] = {}
        self._joined: dict[Any, set[int]] = {}
        self._by_user: dict[uuid.UUID, set[Any]] = {}

    # ─── Connection lifecycle ─────────────────────────────

    def register(self, connection: Any) -> None:
        """Track a newly accepted connection under its user."""
        self._by_user.setdefault(connection.user_id, set()).add(connection)

    def unregister(self, connection: Any) -> None:
        """Forget a connection entirely (disconnect). Safe to call twice."""
        self.leave_room(connection)
        conns = self._by_user.get(connection.user_id)
        if conns is not None:
            conns.discard(connection)
            if not conns:
                del self._by_user[connection.user_id]

    # ─── Rooms ────────────────────────────────────────────

    def join_room(self, match_id: int, connection: Any) -> None:
        """Add a connection to a match room.

        No authorization happens here — the caller (WebSocket endpoint)
        must have checked that the connection's user is a participant.
        """
        self._rooms.setdefault(match_id, set()).add(connection)
        self._joined.setdefault(connection, set()).add(match_id)
        logger.debug(
            "broker.joined",
            match_id=match_id,
            user_id=str(connection.user_id),
        )

    def leave_room(self, connection: Any, match_id: Optional[int] = None) -> None:
        """Remove a connection from one room, or from all of them.

        Unknown connections and rooms are ignored.
        """
        joined = self._joined.get(connection)
        if not joined:
            return
        targets = [match_id] if match_id is not None else list(joined)
        for mid in targets:
            if mid not in joined:
                continue
            joined.discard(mid)
            members = self._rooms.get(mid)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self._rooms[mid]
        if not joined:
            del self._joined[connection]

    def members(self, match_id: int) -> set[Any]:
        """Snapshot of the connections joined to a room."""
        return set(self._rooms.get(match_id, ()))

    def rooms_of(self, connection: Any) -> set[int]:
        return set(self._joined.get(connection, ()))

    def connections_of(self, user_id: uuid.UUID) -> set[Any]:
        return set(self._by_user.get(user_id, ()))

    # ─── Fan-out ──────────────────────────────────────────

    async def broadcast(self, match_id: int, event: dict) -> int:
        """Deliver an event to every connection in the room, sender included.

        Returns how many local connections received it. Also forwards to
        other processes through the Redis relay when one is attached.
        """
        delivered = await self.deliver_to_room(match_id, event)
        await self._forward("room", match_id, event)
        return delivered

    async def notify_user(self, user_id: uuid.UUID, event: dict) -> int:
        """Push an event to all live connections of one user."""
        delivered = await self.deliver_to_user(user_id, event)
        await self._forward("user", user_id, event)
        return delivered

    async def deliver_to_room(self, match_id: int, event: dict) -> int:
        """Local-only delivery (also used by the Redis relay listener)."""
        return await self._send_all(self.members(match_id), event)

    async def deliver_to_user(self, user_id: uuid.UUID, event: dict) -> int:
        return await self._send_all(self.connections_of(user_id), event)

    async def _send_all(self, connections: set[Any], event: dict) -> int:
        if not connections:
            return 0
        targets = list(connections)
        results = await asyncio.gather(
            *(conn.send_json(event) for conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for conn, result in zip(targets, results):
            if isinstance(result, BaseException):
                # Dead socket: drop it, never fail the caller
                logger.warning(
                    "broker.send_failed",
                    user_id=str(conn.user_id),
                    event_type=event.get("type"),
                    error=repr(result),
                )
                self.unregister(conn)
            else:
                delivered += 1
        return delivered

    async def _forward(self, target: str, key: Any, event: dict) -> None:
        if self.relay is None:
            return
        try:
            await self.relay.publish(target, key, event)
        except Exception as e:
            logger.warning("broker.relay_publish_failed", target=target, error=str(e))

    def reset(self) -> None:
        """Drop every room and connection (tests, shutdown)."""
        self._rooms.clear()
        self._joined.clear()
        self._by_user.clear()


# Singleton: one broker per process
broker = ChannelBroker()


def get_broker() -> ChannelBroker:
    """FastAPI dependency for the process-wide broker."""
    return broker
