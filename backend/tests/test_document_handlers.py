import asyncio
from types import SimpleNamespace

import pytest

from docchat.services.document_handlers import (
    DOCUMENT_HANDLERS,
    DocumentHandler,
    DocumentKind,
    UnknownDocumentKindError,
    build_registry,
    get_document_handler,
)

from helpers import RecordingStream, model_response


async def _noop(*args):
    return ""


def test_registry_covers_every_kind():
    assert set(DOCUMENT_HANDLERS) == set(DocumentKind)
    assert get_document_handler("code").kind is DocumentKind.CODE


def test_registry_is_read_only():
    with pytest.raises(TypeError):
        DOCUMENT_HANDLERS[DocumentKind.TEXT] = None


def test_duplicate_kind_rejected():
    handler = DocumentHandler(kind=DocumentKind.TEXT, on_create=_noop, on_update=_noop)
    with pytest.raises(ValueError):
        build_registry([handler, handler])


def test_kind_outside_enum_rejected():
    with pytest.raises(ValueError):
        build_registry([DocumentHandler(kind="sheet", on_create=_noop, on_update=_noop)])


def test_unknown_kind_lookup_raises():
    with pytest.raises(UnknownDocumentKindError):
        get_document_handler("sheet")


def test_kind_missing_from_registry_raises():
    registry = build_registry([
        DocumentHandler(kind=DocumentKind.TEXT, on_create=_noop, on_update=_noop),
    ])
    with pytest.raises(UnknownDocumentKindError):
        get_document_handler(DocumentKind.CODE, registry)


def test_create_text_streams_deltas(fake_anthropic):
    fake_anthropic.script(model_response("A short ", "essay."))
    stream = RecordingStream()

    handler = get_document_handler(DocumentKind.TEXT)
    content = asyncio.run(handler.on_create("Essay", "Write it", "write an essay", stream))

    assert content == "A short essay."
    assert set(stream.types) == {"text-delta"}
    assert "".join(f["content"] for f in stream.frames) == content
    call = fake_anthropic.messages.stream_calls[0]
    assert "Essay" in call["messages"][0]["content"]


def test_update_code_includes_current_content(fake_anthropic):
    fake_anthropic.script(model_response("print('hi')\n"))
    stream = RecordingStream()
    document = SimpleNamespace(content="print('hello')", kind="code")

    handler = get_document_handler(DocumentKind.CODE)
    content = asyncio.run(handler.on_update(document, "shorter greeting", stream))

    assert content == "print('hi')\n"
    call = fake_anthropic.messages.stream_calls[0]
    assert "print('hello')" in call["system"]
    assert call["messages"][0]["content"] == "shorter greeting"
