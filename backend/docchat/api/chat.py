"""Chat API endpoints — streaming model turns and chat deletion."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import get_db
from docchat.core.security import get_current_user_id
from docchat.services.chat_service import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    delete_chat_by_id,
    prepare_turn,
    stream_chat_turn,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


# --- Schemas ---

class ClientMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    role: str
    content: Any = ""


class ChatRequest(BaseModel):
    id: str
    messages: list[ClientMessage]
    selectedChatModel: str = "chat-model-small"


# --- Routes ---

@router.post("")
async def api_chat(
    body: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Run one model turn and stream tokens and document events (SSE).

    The user message is persisted before streaming starts; the assistant
    messages are persisted once the turn completes.
    """
    messages = [m.model_dump() for m in body.messages]

    try:
        await prepare_turn(db, body.id, user_id, messages)
    except BadRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ForbiddenError:
        raise HTTPException(status_code=401, detail="Unauthorized")

    return StreamingResponse(
        stream_chat_turn(body.id, user_id, messages, body.selectedChatModel),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.delete("")
async def api_delete_chat(
    id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Delete a chat owned by the caller, with all of its messages."""
    if not id:
        raise HTTPException(status_code=404, detail="Not Found")

    try:
        await delete_chat_by_id(db, id, user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ForbiddenError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    except SQLAlchemyError:
        logger.exception("Failed to delete chat %s", id)
        raise HTTPException(
            status_code=500, detail="An error occurred while processing your request"
        )

    return {"deleted": True, "id": id}
