"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied per route through Depends(get_current_user)
because handlers need the identity itself, not just a pass/fail gate.
Health, auth and the helper directory stay open.
"""

from fastapi import APIRouter

from helpmatch.api.auth import router as auth_router
from helpmatch.api.chat import router as chat_router
from helpmatch.api.health import router as health_router
from helpmatch.api.requests import router as requests_router
from helpmatch.api.users import router as users_router

api_router = APIRouter(prefix="/api/v1")

# Open routes: no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(users_router, tags=["users"])

# Protected routes: every handler depends on get_current_user
api_router.include_router(requests_router, tags=["requests"])
api_router.include_router(chat_router, tags=["matches", "messages"])
