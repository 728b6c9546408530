"""Match resolver — exactly one Match per accepted request.

Learn: A match is the join point between the request workflow and chat.
It is created inside the accept transaction, never on its own, so the
request's status guard and the match insert commit or roll back together.

resolve_or_create() is idempotent: if a previous attempt already created
the match (say, the request update failed after the insert), it finds and
returns that row instead of inserting a second one. The unique constraint
on matches.request_id backs this up at the database level.
"""

import uuid

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.db.models import HelpRequest, Match
from helpmatch.events.store import EventStore
from helpmatch.events.types import MATCH_CREATED
from helpmatch.services.errors import AuthorizationError, NotFoundError


class MatchService:
    """Match creation and participant checks."""

    def __init__(self, db: AsyncSession, events: EventStore):
        self.db = db
        self.events = events

    async def resolve_or_create(self, request: HelpRequest) -> Match:
        """Return the request's match, creating it on first call.

        Does not commit — the caller owns the transaction.
        """
        if request.match_id is not None:
            match = await self.db.get(Match, request.match_id)
            if match is not None:
                return match

        result = await self.db.execute(
            select(Match).where(Match.request_id == request.id)
        )
        existing = result.scalars().first()
        if existing is not None:
            return existing

        match = Match(
            request_id=request.id,
            receiver_id=request.receiver_id,
            helper_id=request.helper_id,
        )
        self.db.add(match)
        await self.db.flush()  # need the id for the request row

        await self.events.append(
            stream_id=f"match:{match.id}",
            event_type=MATCH_CREATED,
            data={
                "match_id": match.id,
                "request_id": request.id,
                "receiver_id": str(request.receiver_id),
                "helper_id": str(request.helper_id),
            },
        )
        return match

    async def get_match(self, match_id: int) -> Match:
        match = await self.db.get(Match, match_id)
        if match is None:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    async def require_participant(self, match_id: int, user_id: uuid.UUID) -> Match:
        """Load a match and make sure the user is one of its two members."""
        match = await self.get_match(match_id)
        if not match.has_participant(user_id):
            raise AuthorizationError(
                f"User {user_id} is not a participant of match {match_id}"
            )
        return match

    async def list_matches_for_user(self, user_id: uuid.UUID) -> list[Match]:
        result = await self.db.execute(
            select(Match)
            .where(or_(Match.receiver_id == user_id, Match.helper_id == user_id))
            .order_by(Match.created_at.desc(), Match.id.desc())
        )
        return list(result.scalars().all())
