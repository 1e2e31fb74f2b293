"""Document API endpoints — read and save documents from the editor."""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.database import get_db
from docchat.core.security import get_current_user_id
from docchat.services.document_handlers import DocumentKind
from docchat.services.document_service import get_document_by_id, save_document, serialize_document

router = APIRouter(prefix="/api/document", tags=["documents"])


class SaveDocumentRequest(BaseModel):
    title: str
    content: str
    kind: DocumentKind = DocumentKind.TEXT


@router.get("")
async def api_get_document(
    id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")

    document = await get_document_by_id(db, id)
    if document is None:
        raise HTTPException(status_code=404, detail="Not Found")
    if document.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return serialize_document(document)


@router.post("")
async def api_save_document(
    body: SaveDocumentRequest,
    id: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create the document or overwrite its content (editor autosave)."""
    if not id:
        raise HTTPException(status_code=400, detail="Missing id")

    existing = await get_document_by_id(db, id)
    if existing is not None and existing.user_id != user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")

    document = await save_document(
        db,
        document_id=id,
        title=body.title,
        kind=body.kind.value,
        content=body.content,
        user_id=user_id,
    )
    return serialize_document(document)
