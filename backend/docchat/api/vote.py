"""Vote API endpoints — message feedback."""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import get_db
from docchat.core.security import get_current_user_id
from docchat.services.chat_service import get_chat_by_id
from docchat.services.vote_service import get_votes_by_chat_id, vote_message

router = APIRouter(prefix="/api/vote", tags=["chat"])


class VoteRequest(BaseModel):
    chatId: str
    messageId: str
    type: Literal["up", "down"]


@router.get("")
async def api_get_votes(
    chatId: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not chatId:
        raise HTTPException(status_code=400, detail="chatId is required")
    await _check_chat_owner(db, chatId, user_id)
    return await get_votes_by_chat_id(db, chatId)


@router.patch("")
async def api_vote(
    body: VoteRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await _check_chat_owner(db, body.chatId, user_id)
    await vote_message(db, body.chatId, body.messageId, upvote=body.type == "up")
    return {"success": True}


async def _check_chat_owner(db: AsyncSession, chat_id: str, user_id: str) -> None:
    chat = await get_chat_by_id(db, chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="Chat not found")
    if chat.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
