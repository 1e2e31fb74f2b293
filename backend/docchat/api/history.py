"""History API — the caller's chats, newest first."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import get_db
from docchat.core.security import get_current_user_id
from docchat.services.chat_service import list_chats

router = APIRouter(prefix="/api/history", tags=["chat"])


@router.get("")
async def api_history(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await list_chats(db, user_id)
