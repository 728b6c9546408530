"""Initial schema: users, events, help_requests, matches, messages

Learn: One migration for the whole request → match → chat model.
- help_requests.match_id has no FK: matches.request_id (UNIQUE) is the
  link that enforces one match per request
- messages are indexed on (match_id, created_at, id) — the exact order
  the history endpoint reads them in

Revision ID: 3f1c2a9d7b10
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c2a9d7b10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JsonType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="receiver"),
        sa.Column("city", sa.String(100), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("stream_id", sa.String(200), nullable=False),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("data", JsonType, nullable=False),
        sa.Column("metadata", JsonType, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_events_stream", "events", ["stream_id", "id"])
    op.create_index("idx_events_type", "events", ["type"])

    op.create_table(
        "help_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("receiver_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("helper_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.String(200), nullable=False),
        sa.Column("details", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("match_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_help_requests_helper", "help_requests", ["helper_id", "created_at"])
    op.create_index("idx_help_requests_receiver", "help_requests", ["receiver_id", "created_at"])

    op.create_table(
        "matches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "request_id", sa.Integer(), sa.ForeignKey("help_requests.id"),
            nullable=False, unique=True,
        ),
        sa.Column("receiver_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("helper_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("match_id", sa.Integer(), sa.ForeignKey("matches.id"), nullable=False),
        sa.Column("sender_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_messages_match", "messages", ["match_id", "created_at", "id"])


def downgrade() -> None:
    op.drop_index("idx_messages_match", table_name="messages")
    op.drop_table("messages")
    op.drop_table("matches")
    op.drop_index("idx_help_requests_receiver", table_name="help_requests")
    op.drop_index("idx_help_requests_helper", table_name="help_requests")
    op.drop_table("help_requests")
    op.drop_index("idx_events_type", table_name="events")
    op.drop_index("idx_events_stream", table_name="events")
    op.drop_table("events")
    op.drop_table("users")
