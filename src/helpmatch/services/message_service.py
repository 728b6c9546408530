"""Message service — append-only chat log plus live relay.

Learn: Sending a message is two steps, in this order:
1. Persist and COMMIT the message (server-assigned id + timestamp)
2. Relay the persisted row to the match's room through the broker

Step 2 never runs for a message that failed step 1, and a failure in
step 2 (dead socket, Redis down) never undoes step 1. Clients treat
GET /messages/{match_id} as the authoritative order and the relay as a
low-latency append to an already-loaded view.

Every call re-checks that the caller is one of the match's two
participants — joining a room grants nothing by itself.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.config import settings
from helpmatch.db.models import Message
from helpmatch.events.store import EventStore
from helpmatch.events.types import MESSAGE_SENT
from helpmatch.realtime.broker import ChannelBroker
from helpmatch.schemas.chat import MessageRead
from helpmatch.services.errors import StorageError, ValidationError
from helpmatch.services.match_service import MatchService

logger = structlog.get_logger()


class MessageService:
    """Chat persistence and history."""

    def __init__(self, db: AsyncSession, broker: Optional[ChannelBroker] = None):
        self.db = db
        self.broker = broker
        self.events = EventStore(db)
        self.matches = MatchService(db, self.events)

    # ─── Send ────────────────────────────────────────────

    async def append_message(
        self,
        match_id: int,
        sender_id: uuid.UUID,
        content: str,
    ) -> Message:
        """Persist a message from a participant, then relay it.

        Content is stored trimmed; the length limit applies to the trimmed text.
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")
        if len(content) > settings.max_message_length:
            raise ValidationError(
                f"Message is longer than {settings.max_message_length} characters"
            )

        match = await self.matches.require_participant(match_id, sender_id)

        msg = Message(match_id=match.id, sender_id=sender_id, content=content)
        try:
            self.db.add(msg)
            await self.db.flush()
            await self.events.append(
                stream_id=f"match:{match.id}",
                event_type=MESSAGE_SENT,
                data={"message_id": msg.id, "sender_id": str(sender_id)},
                metadata={"actor_id": str(sender_id)},
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "message.append_failed",
                match_id=match_id,
                actor_id=str(sender_id),
                error=str(e),
            )
            raise StorageError("Could not save the message") from e

        # Re-read so the relayed payload matches what history will return
        await self.db.refresh(msg)
        logger.info("message.sent", match_id=match.id, message_id=msg.id, actor_id=str(sender_id))

        await self._relay(msg)
        return msg

    async def _relay(self, msg: Message) -> None:
        if self.broker is None:
            return
        event = {
            "type": "receive_message",
            "message": MessageRead.model_validate(msg).model_dump(mode="json"),
        }
        try:
            await self.broker.broadcast(msg.match_id, event)
        except Exception as e:
            logger.warning(
                "message.relay_failed",
                match_id=msg.match_id,
                message_id=msg.id,
                error=str(e),
            )

    # ─── History ─────────────────────────────────────────

    async def get_history(
        self,
        match_id: int,
        caller_id: uuid.UUID,
        *,
        after_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Message]:
        """All messages of a match, oldest first.

        after_id/limit page forward through long conversations; without
        them the whole log comes back.
        """
        await self.matches.require_participant(match_id, caller_id)

        q = (
            select(Message)
            .where(Message.match_id == match_id)
            .order_by(Message.created_at, Message.id)
        )
        if after_id is not None:
            q = q.where(Message.id > after_id)
        if limit is not None:
            q = q.limit(limit)
        result = await self.db.execute(q)
        return list(result.scalars().all())
