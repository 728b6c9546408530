"""Auth API — registration and login.

Learn: Routes for user authentication:
- POST /auth/register → create an account (receiver or helper)
- POST /auth/login → email/password → JWT tokens
- POST /auth/refresh → refresh token → new token pair
- GET /auth/me → current user info
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.auth.dependencies import CurrentIdentity, get_current_user
from helpmatch.auth.jwt import (
    TokenError,
    create_access_token,
    create_refresh_token,
    verify_token,
)
from helpmatch.db.engine import get_db
from helpmatch.schemas.user import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserRead,
)
from helpmatch.services.user_service import EmailAlreadyRegisteredError, UserService

router = APIRouter(prefix="/auth")


def _get_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


def _tokens_for(user_id: str, role: str) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(user_id, role),
        refresh_token=create_refresh_token(user_id, role),
    )


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=UserRead, status_code=201)
async def register(body: RegisterRequest, svc: UserService = Depends(_get_service)):
    """Create a new user account."""
    try:
        return await svc.register(
            email=body.email,
            name=body.name,
            password=body.password,
            role=body.role,
            city=body.city,
        )
    except EmailAlreadyRegisteredError:
        raise HTTPException(status_code=409, detail="Email already registered")


# ─── Login ───────────────────────────────────────────────


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, svc: UserService = Depends(_get_service)):
    """Login with email and password → JWT tokens."""
    user = await svc.authenticate(body.email, body.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _tokens_for(str(user.id), user.role)


# ─── Refresh ────────────────────────────────────────────


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest):
    """Exchange a refresh token for a new token pair."""
    try:
        payload = verify_token(body.refresh_token, expected_type="refresh")
    except TokenError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return _tokens_for(payload["sub"], payload.get("role", "receiver"))


# ─── Current user ───────────────────────────────────────


@router.get("/me", response_model=UserRead)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_user),
    svc: UserService = Depends(_get_service),
):
    """Get the current authenticated user's info."""
    user = await svc.get_user(identity.user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
