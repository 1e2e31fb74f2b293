"""PDF service — the single PDF reference attached to a chat."""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.models.pdf import PdfReference


class PdfServiceError(Exception):
    pass


class PdfNotFoundError(PdfServiceError):
    pass


async def get_pdf_by_chat_id(db: AsyncSession, chat_id: str) -> PdfReference | None:
    result = await db.execute(select(PdfReference).where(PdfReference.chat_id == chat_id))
    return result.scalar_one_or_none()


async def save_pdf(db: AsyncSession, chat_id: str, url: str) -> PdfReference:
    """Attach ``url`` to the chat. A chat that already has a PDF keeps its row and id."""
    pdf = await get_pdf_by_chat_id(db, chat_id)
    if pdf is None:
        pdf = PdfReference(id=str(uuid.uuid4()), chat_id=chat_id, url=url)
        db.add(pdf)
    else:
        pdf.url = url
    await db.commit()
    await db.refresh(pdf)
    return pdf


async def update_pdf(db: AsyncSession, pdf_id: str, chat_id: str, url: str) -> PdfReference:
    result = await db.execute(select(PdfReference).where(PdfReference.id == pdf_id))
    pdf = result.scalar_one_or_none()
    if pdf is None:
        raise PdfNotFoundError("PDF not found")
    if pdf.chat_id != chat_id:
        raise PdfServiceError("PDF belongs to a different chat")
    pdf.url = url
    await db.commit()
    await db.refresh(pdf)
    return pdf


def serialize_pdf(pdf: PdfReference) -> dict:
    return {"id": pdf.id, "url": pdf.url, "chatId": pdf.chat_id}
