"""Event store — append-only audit log.

Learn: Every state change is also written as an immutable event.
Instead of only UPDATE help_requests SET status='accepted', we INSERT
{type: "request.accepted", data: {match_id: 7}} in the same transaction.

The help_requests / matches / messages tables stay the source of truth;
the events table answers "who did what, and when" after the fact.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.db.models import Event


class EventStore:
    """Append-only event store backed by the main database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Append an event to a stream. Returns the created event.

        Only flushes — the caller's commit decides whether it sticks.
        """
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()  # get the auto-generated id
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Read events for a specific stream, optionally after a given position."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())
