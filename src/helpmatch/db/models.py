"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic migrations mirror these models.

Key concepts:
- UUID primary keys for users (identities are shared with other services)
- Integer primary keys for requests, matches and messages — the insertion
  id doubles as the tie-break when two messages share a timestamp
- Portable column types (Uuid, JSON) so the same models run on PostgreSQL
  in production and SQLite in tests
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


# ══════════════════════════════════════════════════════════════
# Identity
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A person using the platform, either asking for help or offering it.

    Learn: The role decides which side of the request workflow a user is on.
    Receivers create requests; helpers accept or decline them. The core
    only ever reads (id, role) — everything else is profile data.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default="receiver"
    )  # receiver, helper, admin
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Audit trail
# ══════════════════════════════════════════════════════════════


class Event(Base):
    """Immutable event log — every request, match and message change.

    Learn: Events are append-only (never updated/deleted) and written in the
    same transaction as the change they describe, so the log can never
    claim a transition that was rolled back.

    stream_id examples: "request:42", "match:7"
    type examples: "request.accepted", "message.sent"
    """

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_stream", "stream_id", "id"),
        Index("idx_events_type", "type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    stream_id: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(100), nullable=False)
    data: Mapped[dict] = mapped_column(JsonType, nullable=False)
    meta: Mapped[dict] = mapped_column(
        "metadata", JsonType, nullable=False, default=dict
    )  # actor_id
    # Note: Python attr is "meta" because "metadata" is reserved by SQLAlchemy.
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# Request → Match → Messages
# ══════════════════════════════════════════════════════════════


class HelpRequest(Base):
    """A receiver's ask for help, directed at one specific helper.

    Learn: Requests flow through a tiny one-shot state machine:
      pending → accepted | declined
    Both outcomes are terminal. match_id is set exactly when the request
    is accepted — the conditional UPDATE on status is what makes the
    transition safe under concurrent accept/decline clicks.

    Requests are never deleted; they double as the audit trail of who
    asked whom for what.
    """

    __tablename__ = "help_requests"
    __table_args__ = (
        Index("idx_help_requests_helper", "helper_id", "created_at"),
        Index("idx_help_requests_receiver", "receiver_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    helper_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(200), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )  # pending, accepted, declined
    match_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # matches.id, no FK: matches.request_id already points back
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    @property
    def category(self) -> str:
        """Legacy name for reason, still sent by older clients."""
        return self.reason


class Match(Base):
    """The pairing of a receiver and a helper, created on accept.

    Learn: One match per accepted request — request_id is unique, so even a
    retry that slipped past the request's status guard cannot insert a
    second row. The participant pair is fixed at creation.
    """

    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    request_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("help_requests.id"), unique=True, nullable=False
    )
    receiver_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    helper_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    @property
    def participant_ids(self) -> tuple[uuid.UUID, uuid.UUID]:
        return (self.receiver_id, self.helper_id)

    def has_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participant_ids


class Message(Base):
    """One chat line inside a match. Append-only.

    Ordering within a match is (created_at, id): the server clock first,
    the insertion id when two messages land in the same instant.
    """

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_match", "match_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("matches.id"), nullable=False
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
