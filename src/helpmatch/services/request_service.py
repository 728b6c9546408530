"""Request service — the help request state machine.

Learn: This is the CORE of the platform. A request has one decision to make:

  pending → accepted   (helper says yes; a Match is created)
  pending → declined   (helper says no)

Both outcomes are terminal. Each transition is:
1. Authorized (only the request's helper may decide)
2. Checked against VALID_TRANSITIONS
3. Applied with a conditional UPDATE ... WHERE status = 'pending'
4. Recorded as an immutable event (audit trail)
5. Pushed to both participants' live sockets

Step 3 is what makes concurrent clicks safe. Two accepts (or an accept and
a decline) can both pass the check in step 2 with a stale read, but only
one UPDATE matches a pending row — the database serializes them. The
loser sees rowcount 0, rolls back and gets InvalidStateError. The match
insert runs inside the same transaction, so a rolled-back accept leaves
no orphan match behind.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.db.models import HelpRequest, utcnow
from helpmatch.events.store import EventStore
from helpmatch.events.types import (
    REQUEST_ACCEPTED,
    REQUEST_CREATED,
    REQUEST_DECLINED,
)
from helpmatch.realtime.broker import ChannelBroker
from helpmatch.schemas.help_request import HelpRequestRead
from helpmatch.services.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from helpmatch.services.match_service import MatchService
from helpmatch.services.user_service import UserService

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════
# State Machine
# ═══════════════════════════════════════════════════════════

VALID_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"accepted", "declined"},
    "accepted": set(),  # terminal state
    "declined": set(),  # terminal state
}

_TRANSITION_EVENTS = {
    "accepted": REQUEST_ACCEPTED,
    "declined": REQUEST_DECLINED,
}


# ═══════════════════════════════════════════════════════════
# Service
# ═══════════════════════════════════════════════════════════


class RequestService:
    """Create, accept, decline and list help requests."""

    def __init__(self, db: AsyncSession, broker: Optional[ChannelBroker] = None):
        self.db = db
        self.broker = broker
        self.events = EventStore(db)
        self.matches = MatchService(db, self.events)
        self.users = UserService(db)

    # ─── Create ──────────────────────────────────────────

    async def create_request(
        self,
        *,
        receiver_id: uuid.UUID,
        helper_id: uuid.UUID,
        reason: str,
        details: str,
    ) -> HelpRequest:
        """Create a pending request from a receiver to a helper.

        Touches neither matches nor messages.
        """
        reason = (reason or "").strip()
        details = (details or "").strip()
        if not reason:
            raise ValidationError("reason is required")
        if not details:
            raise ValidationError("details are required")
        if receiver_id == helper_id:
            raise ValidationError("You cannot send a request to yourself")

        helper = await self.users.get_helper(helper_id)
        if helper is None:
            logger.info(
                "request.create_rejected",
                actor_id=str(receiver_id),
                helper_id=str(helper_id),
                reason="not_a_helper",
            )
            raise ValidationError(f"User {helper_id} is not a helper")

        hr = HelpRequest(
            receiver_id=receiver_id,
            helper_id=helper_id,
            reason=reason,
            details=details,
            status="pending",
        )
        try:
            self.db.add(hr)
            await self.db.flush()

            await self.events.append(
                stream_id=f"request:{hr.id}",
                event_type=REQUEST_CREATED,
                data={
                    "request_id": hr.id,
                    "receiver_id": str(receiver_id),
                    "helper_id": str(helper_id),
                    "reason": reason,
                },
                metadata={"actor_id": str(receiver_id)},
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("request.create_failed", actor_id=str(receiver_id), error=str(e))
            raise StorageError("Could not save the request") from e

        await self.db.refresh(hr)
        logger.info(
            "request.created",
            request_id=hr.id,
            actor_id=str(receiver_id),
            helper_id=str(helper_id),
        )
        await self._notify(hr)
        return hr

    # ─── Read ────────────────────────────────────────────

    async def get_request(self, request_id: int, caller_id: uuid.UUID) -> HelpRequest:
        """A single request, visible to its receiver and helper only."""
        hr = await self.db.get(HelpRequest, request_id)
        if hr is None:
            raise NotFoundError(f"Request {request_id} not found")
        if caller_id not in (hr.receiver_id, hr.helper_id):
            raise AuthorizationError(f"Request {request_id} is not yours")
        return hr

    async def list_requests_for_helper(
        self,
        helper_id: uuid.UUID,
        *,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[HelpRequest]:
        """Incoming requests for a helper, newest first."""
        return await self._list(HelpRequest.helper_id == helper_id, status, limit)

    async def list_requests_for_receiver(
        self,
        receiver_id: uuid.UUID,
        *,
        status: Optional[str] = None,
        limit: int = 100,
    ) -> list[HelpRequest]:
        """Requests a receiver has sent, newest first."""
        return await self._list(HelpRequest.receiver_id == receiver_id, status, limit)

    async def _list(self, owner_clause, status: Optional[str], limit: int) -> list[HelpRequest]:
        q = (
            select(HelpRequest)
            .where(owner_clause)
            .order_by(HelpRequest.created_at.desc(), HelpRequest.id.desc())
            .limit(limit)
        )
        if status:
            q = q.where(HelpRequest.status == status)
        result = await self.db.execute(q)
        return list(result.scalars().all())

    # ─── Status changes (state machine) ──────────────────

    async def accept_request(self, request_id: int, caller_id: uuid.UUID) -> HelpRequest:
        """Helper accepts: status → accepted, match created, match_id set."""
        return await self._transition(request_id, caller_id, "accepted")

    async def decline_request(self, request_id: int, caller_id: uuid.UUID) -> HelpRequest:
        """Helper declines: status → declined, no match."""
        return await self._transition(request_id, caller_id, "declined")

    async def _transition(
        self, request_id: int, caller_id: uuid.UUID, target: str
    ) -> HelpRequest:
        operation = "accept" if target == "accepted" else "decline"
        log = logger.bind(
            operation=operation, request_id=request_id, actor_id=str(caller_id)
        )

        hr = await self.db.get(HelpRequest, request_id)
        if hr is None:
            log.info("request.transition_rejected", reason="not_found")
            raise NotFoundError(f"Request {request_id} not found")
        if hr.helper_id != caller_id:
            log.warning("request.transition_rejected", reason="not_owner")
            raise AuthorizationError(
                f"Only the requested helper can {operation} request {request_id}"
            )
        if target not in VALID_TRANSITIONS.get(hr.status, set()):
            log.info("request.transition_rejected", reason="invalid_state", status=hr.status)
            raise InvalidStateError(f"Request {request_id} is already {hr.status}")

        try:
            # Compare-and-swap: only one caller can move a pending row
            result = await self.db.execute(
                update(HelpRequest)
                .where(HelpRequest.id == request_id, HelpRequest.status == "pending")
                .values(status=target, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                log.info("request.transition_rejected", reason="lost_race")
                raise InvalidStateError(f"Request {request_id} was already decided")

            data: dict = {"request_id": request_id, "from": "pending", "to": target}
            if target == "accepted":
                match = await self.matches.resolve_or_create(hr)
                await self.db.execute(
                    update(HelpRequest)
                    .where(HelpRequest.id == request_id)
                    .values(match_id=match.id)
                    .execution_options(synchronize_session=False)
                )
                data["match_id"] = match.id

            await self.events.append(
                stream_id=f"request:{request_id}",
                event_type=_TRANSITION_EVENTS[target],
                data=data,
                metadata={"actor_id": str(caller_id)},
            )
            await self.db.commit()
        except IntegrityError as e:
            # A concurrent accept already inserted the match for this request
            await self.db.rollback()
            log.info("request.transition_rejected", reason="match_exists")
            raise InvalidStateError(f"Request {request_id} was already decided") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            log.error("request.transition_failed", error=str(e))
            raise StorageError(f"Could not {operation} request {request_id}") from e

        await self.db.refresh(hr)
        log.info("request.transitioned", status=hr.status, match_id=hr.match_id)
        await self._notify(hr)
        return hr

    # ─── Live updates ────────────────────────────────────

    async def _notify(self, hr: HelpRequest) -> None:
        """Push the fresh request to both sides so dashboards update in place."""
        if self.broker is None:
            return
        event = {
            "type": "request_updated",
            "request": HelpRequestRead.model_validate(hr).model_dump(mode="json"),
        }
        for user_id in (hr.receiver_id, hr.helper_id):
            await self.broker.notify_user(user_id, event)
