"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the Authorization header.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Header

from helpmatch.auth.jwt import TokenError, verify_token


class CurrentIdentity:
    """The authenticated user making the request.

    Learn: Everything downstream authorizes against user_id (is this
    caller a participant?) and role (is this caller a helper?).
    """

    def __init__(self, user_id: uuid.UUID, role: str = "receiver"):
        self.user_id = user_id
        self.role = role

    @property
    def is_helper(self) -> bool:
        return self.role == "helper"


def identity_from_token(token: str) -> CurrentIdentity:
    """Decode an access token into an identity. Raises TokenError."""
    payload = verify_token(token)
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise TokenError("Token subject is not a user id")
    return CurrentIdentity(user_id=user_id, role=payload.get("role", "receiver"))


async def get_current_user_optional(
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentIdentity]:
    """Extract current identity (optional — returns None if no auth)."""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:]
        try:
            return identity_from_token(token)
        except TokenError as e:
            raise HTTPException(
                status_code=401,
                detail=str(e),
                headers={"WWW-Authenticate": "Bearer"},
            )
    return None


async def get_current_user(
    identity: Optional[CurrentIdentity] = Depends(get_current_user_optional),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if no auth)."""
    if not identity:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
