"""Suggestion API endpoints — anchored suggestions and accept/decline."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import async_session, get_db
from docchat.core.security import get_current_user_id
from docchat.models.document import Document, Suggestion
from docchat.services.document_service import (
    get_document_by_id,
    get_suggestion_by_id,
    get_suggestions_by_document_id,
    mark_suggestion_resolved,
    serialize_document,
    serialize_suggestion,
    update_document_content,
)
from docchat.services.suggestion_projector import (
    NO_DEBOUNCE,
    EditorState,
    Node,
    accept_suggestion,
    decline_suggestion,
    project_with_positions,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/suggestions", tags=["suggestions"])


@router.get("")
async def api_get_suggestions(
    documentId: str = Query(...),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Unresolved suggestions with their anchors in the current document text."""
    document = await _get_owned_document(db, documentId, user_id)
    suggestions = await get_suggestions_by_document_id(db, document.id)
    projected = project_with_positions(Node.from_text(document.content or ""), suggestions)
    return [
        {**serialize_suggestion(s), **p.to_dict()}
        for s, p in zip(suggestions, projected)
    ]


@router.post("/{suggestion_id}/accept")
async def api_accept_suggestion(
    suggestion_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Write the suggested text over its anchor and save the document right away."""
    suggestion, document = await _get_open_suggestion(db, suggestion_id, user_id)
    state = await _editor_state(db, document)

    tr = accept_suggestion(state, suggestion.id)
    state = state.apply(tr)
    if tr.get_meta(NO_DEBOUNCE):
        document = await update_document_content(db, document.id, state.content)

    background_tasks.add_task(_resolve_suggestion, suggestion.id)
    return {
        "document": serialize_document(document),
        "suggestion": {**serialize_suggestion(suggestion), "isResolved": True},
        "remaining": _remaining(state),
    }


@router.post("/{suggestion_id}/decline")
async def api_decline_suggestion(
    suggestion_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Retire the suggestion without touching the document."""
    suggestion, document = await _get_open_suggestion(db, suggestion_id, user_id)
    state = await _editor_state(db, document)
    state = state.apply(decline_suggestion(state, suggestion.id))

    background_tasks.add_task(_resolve_suggestion, suggestion.id)
    return {
        "suggestion": {**serialize_suggestion(suggestion), "isResolved": True},
        "remaining": _remaining(state),
    }


# --- Helpers ---

async def _get_owned_document(db: AsyncSession, document_id: str, user_id: str) -> Document:
    document = await get_document_by_id(db, document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    if document.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return document


async def _get_open_suggestion(
    db: AsyncSession, suggestion_id: str, user_id: str
) -> tuple[Suggestion, Document]:
    suggestion = await get_suggestion_by_id(db, suggestion_id)
    if suggestion is None:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    document = await _get_owned_document(db, suggestion.document_id, user_id)
    if suggestion.is_resolved:
        raise HTTPException(status_code=400, detail="Suggestion already resolved")
    return suggestion, document


async def _editor_state(db: AsyncSession, document: Document) -> EditorState:
    suggestions = await get_suggestions_by_document_id(db, document.id)
    return EditorState.create(document.content or "", suggestions)


def _remaining(state: EditorState) -> list[dict]:
    return [d.suggestion.to_dict() for d in state.suggestions.decorations]


async def _resolve_suggestion(suggestion_id: str) -> None:
    try:
        async with async_session() as db:
            await mark_suggestion_resolved(db, suggestion_id)
    except Exception:
        logger.exception("Failed to mark suggestion %s resolved", suggestion_id)
