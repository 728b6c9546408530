"""Pydantic schemas for help requests.

Learn: `reason` is the canonical label. Older clients send the same value
as `category` too (they were working around a stricter validator), so the
create schema accepts either, and the read schema echoes both.

Emptiness is NOT checked here — the service does it, so the same rule
applies whether the call comes from HTTP, the CLI, or a test.
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class HelpRequestCreate(BaseModel):
    """Receiver asks a helper for support."""
    helper_id: uuid.UUID = Field(..., description="User UUID of the helper")
    reason: Optional[str] = Field(
        None, max_length=200, description="Short label, e.g. 'Mentorship'"
    )
    category: Optional[str] = Field(
        None, max_length=200, description="Deprecated alias for reason"
    )
    details: str = Field(default="", description="What the receiver needs")

    @property
    def resolved_reason(self) -> str:
        return (self.reason or "").strip() or (self.category or "").strip()


class HelpRequestRead(BaseModel):
    id: int
    receiver_id: uuid.UUID
    helper_id: uuid.UUID
    reason: str
    category: str
    details: str
    status: str
    match_id: Optional[int]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
