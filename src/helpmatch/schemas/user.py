"""Pydantic schemas for users and auth tokens."""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8)
    role: str = Field(default="receiver", pattern=r"^(receiver|helper)$")
    city: str = Field(default="", max_length=100)


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshRequest(BaseModel):
    refresh_token: str


class UserRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    role: str
    city: str
    created_at: datetime

    model_config = {"from_attributes": True}


class HelperRead(BaseModel):
    """Public helper card — no email."""
    id: uuid.UUID
    name: str
    city: str

    model_config = {"from_attributes": True}
