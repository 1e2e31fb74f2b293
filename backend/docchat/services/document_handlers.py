"""Document handlers — per-kind create/update generators, registered once at import time."""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Awaitable, Callable, Iterable, Mapping

from docchat.integrations.anthropic_client import (
    CODE_DOCUMENT_PROMPT,
    TEXT_DOCUMENT_PROMPT,
    stream_text,
    update_document_prompt,
)
from docchat.models.document import Document
from docchat.services.data_stream import DataStream


class DocumentKind(str, Enum):
    TEXT = "text"
    CODE = "code"


class UnknownDocumentKindError(LookupError):
    pass


CreateDocument = Callable[[str, str, str, DataStream], Awaitable[str]]
UpdateDocument = Callable[[Document, str, DataStream], Awaitable[str]]


@dataclass(frozen=True)
class DocumentHandler:
    kind: DocumentKind
    on_create: CreateDocument
    on_update: UpdateDocument


async def _stream_draft(system: str, prompt: str, data_stream: DataStream) -> str:
    draft = ""
    async for delta in stream_text(system, prompt):
        draft += delta
        await data_stream.write_data("text-delta", delta)
    return draft


def _creation_prompt(title: str, task: str, chat: str) -> str:
    return f"{title}\n\n{task or ''}\n\n{chat}"


# --- text ---

async def _create_text(title: str, task: str, chat: str, data_stream: DataStream) -> str:
    return await _stream_draft(TEXT_DOCUMENT_PROMPT, _creation_prompt(title, task, chat), data_stream)


async def _update_text(document: Document, description: str, data_stream: DataStream) -> str:
    return await _stream_draft(
        update_document_prompt(document.content, DocumentKind.TEXT.value), description, data_stream
    )


# --- code ---

async def _create_code(title: str, task: str, chat: str, data_stream: DataStream) -> str:
    return await _stream_draft(CODE_DOCUMENT_PROMPT, _creation_prompt(title, task, chat), data_stream)


async def _update_code(document: Document, description: str, data_stream: DataStream) -> str:
    return await _stream_draft(
        update_document_prompt(document.content, DocumentKind.CODE.value), description, data_stream
    )


def build_registry(handlers: Iterable[DocumentHandler]) -> Mapping[DocumentKind, DocumentHandler]:
    """Build a read-only kind -> handler table, rejecting unknown or duplicate kinds."""
    table: dict[DocumentKind, DocumentHandler] = {}
    for handler in handlers:
        kind = DocumentKind(handler.kind)  # ValueError for kinds outside the enum
        if kind in table:
            raise ValueError(f"Duplicate document handler for kind: {kind.value}")
        table[kind] = handler
    return MappingProxyType(table)


DOCUMENT_HANDLERS = build_registry([
    DocumentHandler(kind=DocumentKind.TEXT, on_create=_create_text, on_update=_update_text),
    DocumentHandler(kind=DocumentKind.CODE, on_create=_create_code, on_update=_update_code),
])


def get_document_handler(
    kind: str | DocumentKind,
    registry: Mapping[DocumentKind, DocumentHandler] = DOCUMENT_HANDLERS,
) -> DocumentHandler:
    try:
        return registry[DocumentKind(kind)]
    except (ValueError, KeyError):
        raise UnknownDocumentKindError(f"No document handler found for kind: {kind}") from None
