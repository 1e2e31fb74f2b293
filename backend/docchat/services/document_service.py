"""Document service — document storage and suggestion persistence."""

from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.models.document import Document, Suggestion


class DocumentServiceError(Exception):
    pass


class DocumentNotFoundError(DocumentServiceError):
    pass


# --- Documents ---

async def get_document_by_id(db: AsyncSession, document_id: str) -> Document | None:
    result = await db.execute(select(Document).where(Document.id == document_id))
    return result.scalar_one_or_none()


async def save_document(
    db: AsyncSession,
    document_id: str,
    title: str,
    kind: str,
    content: str | None,
    user_id: str,
) -> Document:
    """Create the document, or overwrite its title and content if it already exists."""
    document = await get_document_by_id(db, document_id)
    if document is None:
        document = Document(
            id=document_id,
            title=title,
            kind=kind,
            content=content,
            user_id=user_id,
        )
        db.add(document)
    else:
        document.title = title
        document.content = content
    await db.commit()
    await db.refresh(document)
    return document


async def update_document_content(db: AsyncSession, document_id: str, content: str) -> Document:
    document = await get_document_by_id(db, document_id)
    if document is None:
        raise DocumentNotFoundError("Document not found")
    document.content = content
    await db.commit()
    await db.refresh(document)
    return document


# --- Suggestions ---

async def save_suggestions(db: AsyncSession, suggestions: list[dict]) -> None:
    """Insert a batch of suggestions in one commit."""
    now = datetime.now(timezone.utc)
    db.add_all(
        Suggestion(
            id=s["id"],
            document_id=s["document_id"],
            document_created_at=s["document_created_at"],
            original_text=s["original_text"],
            suggested_text=s["suggested_text"],
            description=s.get("description", ""),
            is_resolved=s.get("is_resolved", False),
            user_id=s["user_id"],
            created_at=now,
        )
        for s in suggestions
    )
    await db.commit()


async def get_suggestions_by_document_id(
    db: AsyncSession, document_id: str, include_resolved: bool = False
) -> list[Suggestion]:
    query = (
        select(Suggestion)
        .where(Suggestion.document_id == document_id)
        .order_by(Suggestion.created_at.asc())
    )
    if not include_resolved:
        query = query.where(Suggestion.is_resolved.is_(False))
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_suggestion_by_id(db: AsyncSession, suggestion_id: str) -> Suggestion | None:
    result = await db.execute(select(Suggestion).where(Suggestion.id == suggestion_id))
    return result.scalar_one_or_none()


async def mark_suggestion_resolved(db: AsyncSession, suggestion_id: str) -> None:
    await db.execute(
        update(Suggestion).where(Suggestion.id == suggestion_id).values(is_resolved=True)
    )
    await db.commit()


# --- Helpers ---

def serialize_document(document: Document) -> dict:
    return {
        "id": document.id,
        "title": document.title,
        "kind": document.kind,
        "content": document.content,
        "userId": document.user_id,
        "createdAt": document.created_at.isoformat() if document.created_at else None,
    }


def serialize_suggestion(suggestion: Suggestion) -> dict:
    return {
        "id": suggestion.id,
        "documentId": suggestion.document_id,
        "documentCreatedAt": (
            suggestion.document_created_at.isoformat() if suggestion.document_created_at else None
        ),
        "originalText": suggestion.original_text,
        "suggestedText": suggestion.suggested_text,
        "description": suggestion.description,
        "isResolved": suggestion.is_resolved,
        "userId": suggestion.user_id,
        "createdAt": suggestion.created_at.isoformat() if suggestion.created_at else None,
    }
