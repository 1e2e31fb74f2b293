import asyncio

from sqlalchemy import select

from docchat.core.config import settings
from docchat.integrations.anthropic_client import REASONING_MODEL_ID
from docchat.models.conversation import Chat, Message
from docchat.models.document import Document
from docchat.models.pdf import PdfReference
from docchat.services.chat_service import ERROR_MESSAGE, save_chat, save_messages
from docchat.services.pdf_service import save_pdf

from helpers import FakeStream, model_response, parse_sse, run_db


def chat_request(*messages, chat_id="chat-1", model="chat-model-small"):
    return {"id": chat_id, "messages": list(messages), "selectedChatModel": model}


def user_message(text, id="m1"):
    return {"id": id, "role": "user", "content": text}


def stored_messages(chat_id="chat-1"):
    async def query(db):
        result = await db.execute(
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.created_at, Message.position)
        )
        return list(result.scalars().all())
    return run_db(query)


def all_rows(model):
    async def query(db):
        result = await db.execute(select(model))
        return list(result.scalars().all())
    return run_db(query)


class SlowStream(FakeStream):
    async def _iterate(self):
        await asyncio.sleep(0.5)
        for event in self._events:
            yield event


# --- streaming turns ---

def test_turn_streams_text_and_persists_messages(client, auth_headers, fake_anthropic):
    fake_anthropic.script(model_response("Hello ", "there, friend!"))

    response = client.post("/api/chat", json=chat_request(user_message("Hi")), headers=auth_headers())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = parse_sse(response.text)
    assert frames[0]["type"] == "message"
    assert frames[-1] == {"type": "done", "content": ""}
    assert "".join(f["content"] for f in frames if f["type"] == "delta") == "Hello there, friend!"

    stored = stored_messages()
    assert [m.role for m in stored] == ["user", "assistant"]
    assert stored[0].id == "m1"
    assert stored[1].id == frames[0]["content"]
    assert stored[1].content == [{"type": "text", "text": "Hello there, friend!"}]


def test_turn_with_document_tool(client, auth_headers, fake_anthropic):
    tool_args = {"title": "Haiku", "task": "A haiku", "chat": "write a haiku", "kind": "text"}
    fake_anthropic.script(
        model_response(tool_uses=[("call-1", "createDocument", tool_args)]),
        model_response("Autumn moonlight. ", "A worm digs silently."),
        model_response("I wrote a haiku for you."),
    )

    response = client.post(
        "/api/chat", json=chat_request(user_message("write a haiku")), headers=auth_headers()
    )
    types = [f["type"] for f in parse_sse(response.text)]

    start = types.index("tool-call")
    assert types[start + 1:start + 7] == ["kind", "id", "title", "task", "chat", "clear"]
    assert types.index("finish") < types.index("tool-result") < types.index("done")
    assert types.count("message") == 2

    stored = stored_messages()
    assert [m.role for m in stored] == ["user", "assistant", "tool", "assistant"]
    assert stored[1].content[-1]["toolCallId"] == "call-1"
    assert stored[2].content[0]["isError"] is False

    [document] = all_rows(Document)
    assert document.content == "Autumn moonlight. A worm digs silently."

    # the tool result was handed back to the model
    followup = fake_anthropic.messages.stream_calls[2]["messages"]
    assert followup[-1]["content"][0]["tool_use_id"] == "call-1"


def test_tool_failure_is_reported_to_model(client, auth_headers, fake_anthropic):
    fake_anthropic.script(
        model_response(tool_uses=[("call-1", "updateDocument", {"documentId": "nope", "description": "x"})]),
        model_response("That document does not exist."),
    )

    response = client.post("/api/chat", json=chat_request(user_message("fix it")), headers=auth_headers())
    frames = parse_sse(response.text)

    [result] = [f["content"] for f in frames if f["type"] == "tool-result"]
    assert result["isError"] is True
    assert "Document not found" in result["result"]["error"]
    assert frames[-1]["type"] == "done"


def test_model_failure_ends_stream_with_error(client, auth_headers, fake_anthropic):
    fake_anthropic.script(RuntimeError("overloaded"))

    response = client.post("/api/chat", json=chat_request(user_message("Hi")), headers=auth_headers())
    frames = parse_sse(response.text)

    assert frames[-1] == {"type": "error", "content": ERROR_MESSAGE}
    assert [m.role for m in stored_messages()] == ["user"]


def test_turn_timeout_emits_error(client, auth_headers, fake_anthropic, monkeypatch):
    monkeypatch.setattr(settings, "max_duration_seconds", 0.1)
    slow = model_response("Too late.")
    fake_anthropic.script(SlowStream(slow._events, slow._final))

    response = client.post("/api/chat", json=chat_request(user_message("Hi")), headers=auth_headers())
    frames = parse_sse(response.text)

    assert frames[-1] == {"type": "error", "content": ERROR_MESSAGE}
    assert "done" not in [f["type"] for f in frames]


def test_reasoning_model_streams_without_tools(client, auth_headers, fake_anthropic):
    fake_anthropic.script(model_response("42.", thinking=("Let me think. ",)))

    response = client.post(
        "/api/chat",
        json=chat_request(user_message("meaning of life?"), model=REASONING_MODEL_ID),
        headers=auth_headers(),
    )
    frames = parse_sse(response.text)

    assert {"type": "reasoning", "content": "Let me think. "} in frames
    call = fake_anthropic.messages.stream_calls[0]
    assert "tools" not in call
    assert call["thinking"]["type"] == "enabled"
    assert stored_messages()[1].content[0] == {"type": "reasoning", "reasoning": "Let me think. "}


def test_request_without_user_message_is_rejected(client, auth_headers, fake_anthropic):
    response = client.post(
        "/api/chat",
        json=chat_request({"id": "a1", "role": "assistant", "content": "Hi"}),
        headers=auth_headers(),
    )

    assert response.status_code == 400
    assert all_rows(Chat) == []
    assert fake_anthropic.messages.stream_calls == []
    assert fake_anthropic.messages.create_calls == []


def test_unauthenticated_request_is_rejected(client, fake_anthropic):
    response = client.post("/api/chat", json=chat_request(user_message("Hi")))
    assert response.status_code == 401
    assert all_rows(Chat) == []


def test_posting_to_another_users_chat_is_rejected(client, auth_headers, fake_anthropic):
    run_db(lambda db: save_chat(db, chat_id="chat-1", user_id="owner", title="Private"))

    response = client.post(
        "/api/chat", json=chat_request(user_message("Hi")), headers=auth_headers("intruder")
    )

    assert response.status_code == 401
    assert stored_messages() == []


# --- deletion ---

def test_owner_deletes_chat_with_messages_and_pdf(client, auth_headers, fake_anthropic):
    fake_anthropic.script(model_response("Hi!"))
    client.post("/api/chat", json=chat_request(user_message("Hi")), headers=auth_headers())
    run_db(lambda db: save_pdf(db, chat_id="chat-1", url="https://example.com/a.pdf"))

    response = client.delete("/api/chat", params={"id": "chat-1"}, headers=auth_headers())

    assert response.status_code == 200
    assert response.json() == {"deleted": True, "id": "chat-1"}
    assert all_rows(Chat) == []
    assert stored_messages() == []
    assert all_rows(PdfReference) == []


def test_deleting_another_users_chat_is_rejected(client, auth_headers):
    async def seed(db):
        await save_chat(db, chat_id="chat-1", user_id="owner", title="Private")
        await save_messages(db, [
            {"id": "m1", "chat_id": "chat-1", "role": "user", "content": "Hi"},
            {"id": "a1", "chat_id": "chat-1", "role": "assistant", "content": [{"type": "text", "text": "Hello"}]},
        ])

    run_db(seed)
    before = [(m.id, m.role, m.content) for m in stored_messages()]

    response = client.delete("/api/chat", params={"id": "chat-1"}, headers=auth_headers("intruder"))

    assert response.status_code == 401
    [chat] = all_rows(Chat)
    assert chat.user_id == "owner"
    assert [(m.id, m.role, m.content) for m in stored_messages()] == before
    assert [m[0] for m in before] == ["m1", "a1"]


def test_deleting_unknown_chat(client, auth_headers):
    assert client.delete("/api/chat", params={"id": "nope"}, headers=auth_headers()).status_code == 404
    assert client.delete("/api/chat", headers=auth_headers()).status_code == 404
    assert client.delete("/api/chat").status_code == 401


# --- history ---

def test_history_lists_own_chats_newest_first(client, auth_headers):
    async def seed(db):
        await save_chat(db, chat_id="old", user_id="user-1", title="Old")
        await save_chat(db, chat_id="new", user_id="user-1", title="New")
        await save_chat(db, chat_id="theirs", user_id="user-2", title="Theirs")

    run_db(seed)

    response = client.get("/api/history", headers=auth_headers())
    assert [c["id"] for c in response.json()] == ["new", "old"]


def test_health(client):
    assert client.get("/api/health").json() == {"status": "ok"}
