"""PDF reference model — one uploaded PDF url per chat."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from docchat.core.database import Base


class PdfReference(Base):
    __tablename__ = "pdfs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    # No foreign key: a PDF may be attached before the chat's first message creates the chat.
    # Chat deletion removes it explicitly.
    chat_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
