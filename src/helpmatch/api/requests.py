"""Help request API — receivers ask, helpers decide.

Learn: Routes for the full request lifecycle:
- POST /requests → receiver creates a request to a helper
- GET /requests/my-requests → role-scoped list (sent or incoming)
- GET /requests/:id → one request (receiver or helper only)
- PUT /requests/:id/accept → helper accepts, match is created
- PUT /requests/:id/decline → helper declines

Accept/decline return the updated request (with match_id on accept), so
the dashboard can update in place instead of reloading.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.auth.dependencies import CurrentIdentity, get_current_user
from helpmatch.db.engine import get_db
from helpmatch.realtime.broker import ChannelBroker, get_broker
from helpmatch.schemas.help_request import HelpRequestCreate, HelpRequestRead
from helpmatch.services.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from helpmatch.services.request_service import RequestService

router = APIRouter(prefix="/requests")


def _get_service(
    db: AsyncSession = Depends(get_db),
    broker: ChannelBroker = Depends(get_broker),
) -> RequestService:
    return RequestService(db=db, broker=broker)


# ─── Create (receiver → helper) ─────────────────────────


@router.post("", response_model=HelpRequestRead, status_code=201)
async def create_request(
    body: HelpRequestCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_get_service),
):
    """Receiver sends a help request to a helper."""
    if identity.role != "receiver":
        raise HTTPException(status_code=403, detail="Only receivers can create requests")
    try:
        return await svc.create_request(
            receiver_id=identity.user_id,
            helper_id=body.helper_id,
            reason=body.resolved_reason,
            details=body.details,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


# ─── List (role-scoped) ─────────────────────────────────


@router.get("/my-requests", response_model=list[HelpRequestRead])
async def list_my_requests(
    status: Optional[str] = Query(
        None, description="Filter by status: pending, accepted, declined"
    ),
    limit: int = Query(100, ge=1, le=500),
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_get_service),
):
    """Helpers see incoming requests; everyone else sees what they sent."""
    if identity.is_helper:
        return await svc.list_requests_for_helper(
            identity.user_id, status=status, limit=limit
        )
    return await svc.list_requests_for_receiver(
        identity.user_id, status=status, limit=limit
    )


# ─── Get single request ─────────────────────────────────


@router.get("/{request_id}", response_model=HelpRequestRead)
async def get_request(
    request_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_get_service),
):
    try:
        return await svc.get_request(request_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))


# ─── Accept / decline (helper) ──────────────────────────


@router.put("/{request_id}/accept", response_model=HelpRequestRead)
async def accept_request(
    request_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_get_service),
):
    """Helper accepts a pending request — opens the chat."""
    try:
        return await svc.accept_request(request_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.put("/{request_id}/decline", response_model=HelpRequestRead)
async def decline_request(
    request_id: int,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: RequestService = Depends(_get_service),
):
    """Helper declines a pending request."""
    try:
        return await svc.decline_request(request_id, identity.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except InvalidStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
