"""User service — the identity side the request workflow leans on.

Learn: The chat core only needs two facts about a user: their id and
their role. Registration, login and the helper directory live here so
the rest of the code can ask "is this id a helper?" in one place.
"""

import uuid
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.auth.password import hash_password, verify_password
from helpmatch.db.models import User
from helpmatch.events.store import EventStore
from helpmatch.events.types import USER_REGISTERED
from helpmatch.services.errors import HelpMatchError, ValidationError

logger = structlog.get_logger()

ROLES = ("receiver", "helper", "admin")


class EmailAlreadyRegisteredError(HelpMatchError):
    """Raised when registering an email that already has an account."""


class UserService:
    """Registration, authentication and lookups."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.events = EventStore(db)

    async def register(
        self,
        *,
        email: str,
        name: str,
        password: str,
        role: str = "receiver",
        city: str = "",
    ) -> User:
        """Create an account. Emails are stored lowercased.

        The unique index on email is the last word: a concurrent signup that
        slips past the lookup still ends as EmailAlreadyRegisteredError.
        """
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}")
        email = email.strip().lower()
        existing = await self.get_by_email(email)
        if existing:
            raise EmailAlreadyRegisteredError(f"Email {email} already registered")

        user = User(
            email=email,
            name=name.strip(),
            password_hash=hash_password(password),
            role=role,
            city=city.strip(),
        )
        try:
            self.db.add(user)
            await self.db.flush()

            await self.events.append(
                stream_id=f"user:{user.id}",
                event_type=USER_REGISTERED,
                data={"user_id": str(user.id), "role": role},
            )

            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise EmailAlreadyRegisteredError(f"Email {email} already registered")
        await self.db.refresh(user)
        logger.info("user.registered", user_id=str(user.id), role=role)
        return user

    async def authenticate(self, email: str, password: str) -> Optional[User]:
        """Return the user if the credentials match, else None."""
        user = await self.get_by_email(email.strip().lower())
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    async def get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email))
        return result.scalars().first()

    async def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        return await self.db.get(User, user_id)

    async def get_helper(self, user_id: uuid.UUID) -> Optional[User]:
        """The user, but only if they are registered as a helper."""
        user = await self.get_user(user_id)
        if user is None or user.role != "helper":
            return None
        return user

    async def list_helpers(
        self, city: Optional[str] = None, limit: int = 100
    ) -> list[User]:
        """Helper directory, alphabetical."""
        q = select(User).where(User.role == "helper").order_by(User.name).limit(limit)
        if city:
            q = q.where(User.city == city)
        result = await self.db.execute(q)
        return list(result.scalars().all())
