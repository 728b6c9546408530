"""Pydantic schemas for matches and chat messages."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class MatchRead(BaseModel):
    id: int
    request_id: int
    receiver_id: uuid.UUID
    helper_id: uuid.UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageCreate(BaseModel):
    match_id: int
    content: str = Field(default="")


class MessageRead(BaseModel):
    """The persisted message — also the payload of receive_message events."""
    id: int
    match_id: int
    sender_id: uuid.UUID
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}
