"""Chat API — matches and their message history.

Learn: Routes:
- GET /matches → the caller's matches, newest first
- GET /matches/:id → one match (participants only)
- GET /messages/:match_id → full history, oldest first
- POST /messages → send a message; it's persisted, then relayed live
  to everyone in the match's room (sender included)

Clients dedupe by message id: the POST response and the
receive_message event carry the same persisted row.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.auth.dependencies import CurrentIdentity, get_current_user
from helpmatch.config import settings
from helpmatch.db.engine import get_db
from helpmatch.events.store import EventStore
from helpmatch.realtime.broker import ChannelBroker, get_broker
from helpmatch.schemas.chat import MatchRead, MessageCreate, MessageRead
from helpmatch.services.errors import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
)
from helpmatch.services.match_service import MatchService
from helpmatch.services.message_service import MessageService

router = APIRouter()


def _get_message_service(
    db: AsyncSession = Depends(get_db),
    broker: ChannelBroker = Depends(get_broker),
) -> MessageService:
    return MessageService(db=db, broker=broker)


def _get_match_service(db: AsyncSession = Depends(get_db)) -> MatchService:
    return MatchService(db=db, events=EventStore(db))


# ─── Matches ────────────────────────────────────────────


@router.get("/matches", response_model=list[MatchRead])
async def list_my_matches(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MatchService = Depends(_get_match_service),
):
    return await svc.list_matches_for_user(identity.user_id)


@router.get("/matches/{match_id}", response_model=MatchRead)
async def get_match(
    match_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MatchService = Depends(_get_match_service),
):
    try:
        return await svc.require_participant(match_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))


# ─── Messages ───────────────────────────────────────────


@router.get("/messages/{match_id}", response_model=list[MessageRead])
async def get_history(
    match_id: int,
    after_id: Optional[int] = Query(None, description="Only messages after this id"),
    limit: Optional[int] = Query(None, ge=1, le=settings.history_page_limit),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_get_message_service),
):
    """Chat history for a match, oldest → newest."""
    try:
        return await svc.get_history(
            match_id, identity.user_id, after_id=after_id, limit=limit
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))


@router.post("/messages", response_model=MessageRead, status_code=201)
async def send_message(
    body: MessageCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: MessageService = Depends(_get_message_service),
):
    """Send a message to a match the caller belongs to."""
    try:
        return await svc.append_message(body.match_id, identity.user_id, body.content)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
