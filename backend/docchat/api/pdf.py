"""PDF API endpoints — the PDF reference shown alongside a chat."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import get_db
from docchat.core.security import get_current_user_id
from docchat.services.chat_service import get_chat_by_id
from docchat.services.pdf_service import (
    PdfNotFoundError,
    PdfServiceError,
    get_pdf_by_chat_id,
    save_pdf,
    serialize_pdf,
    update_pdf,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/pdf", tags=["pdf"])


# --- Schemas ---

class SavePdfRequest(BaseModel):
    url: str = ""
    chatId: str = ""


class UpdatePdfRequest(BaseModel):
    id: str = ""
    url: str = ""
    chatId: str = ""


# --- Routes ---

@router.get("")
async def api_get_pdf(
    chatId: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The chat's PDF reference, or ``null`` when none is attached."""
    if not chatId:
        raise HTTPException(status_code=404, detail="Not Found")
    await _check_chat_owner(db, chatId, user_id)

    try:
        pdf = await get_pdf_by_chat_id(db, chatId)
    except SQLAlchemyError:
        logger.exception("Error fetching PDF for chat %s", chatId)
        raise HTTPException(status_code=500, detail="Internal Server Error")

    return serialize_pdf(pdf) if pdf else None


@router.post("/save")
async def api_save_pdf(
    body: SavePdfRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not body.url or not body.chatId:
        raise HTTPException(status_code=400, detail="URL and chatId are required")
    await _check_chat_owner(db, body.chatId, user_id)

    try:
        pdf = await save_pdf(db, chat_id=body.chatId, url=body.url)
    except SQLAlchemyError:
        logger.exception("Error saving PDF for chat %s", body.chatId)
        raise HTTPException(status_code=500, detail="Failed to save PDF")

    return {"success": True, "id": pdf.id}


@router.put("/save")
async def api_update_pdf(
    body: UpdatePdfRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not body.id or not body.url or not body.chatId:
        raise HTTPException(status_code=400, detail="ID, URL and chatId are required")
    await _check_chat_owner(db, body.chatId, user_id)

    try:
        pdf = await update_pdf(db, pdf_id=body.id, chat_id=body.chatId, url=body.url)
    except PdfNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except PdfServiceError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SQLAlchemyError:
        logger.exception("Error updating PDF %s", body.id)
        raise HTTPException(status_code=500, detail="Failed to update PDF")

    return {"success": True, "id": pdf.id}


async def _check_chat_owner(db: AsyncSession, chat_id: str, user_id: str) -> None:
    """Reject chats owned by someone else. The chat itself may not exist yet."""
    chat = await get_chat_by_id(db, chat_id)
    if chat is not None and chat.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
