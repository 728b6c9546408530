"""Helper directory — who can a receiver reach out to."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from helpmatch.db.engine import get_db
from helpmatch.schemas.user import HelperRead
from helpmatch.services.user_service import UserService

router = APIRouter(prefix="/users")


@router.get("/helpers", response_model=list[HelperRead])
async def list_helpers(
    city: Optional[str] = Query(None, description="Only helpers in this city"),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    return await UserService(db).list_helpers(city=city, limit=limit)
