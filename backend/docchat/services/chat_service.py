"""Chat service — conversation storage and the streaming tool-using model turn."""

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, AsyncIterator

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from docchat.core.config import settings
from docchat.core.database import async_session
from docchat.integrations.anthropic_client import (
    REASONING_MODEL_ID,
    generate_title_from_user_message,
    get_anthropic_client,
    model_for,
    smooth_stream,
    system_prompt,
)
from docchat.models.conversation import Chat, Message
from docchat.models.pdf import PdfReference
from docchat.services.data_stream import DataStream, encode_frame
from docchat.services.tools import Tool, ToolContext, ToolExecutionError, active_tools, execute_tool

logger = logging.getLogger(__name__)

ERROR_MESSAGE = "Oops, an error occured!"

# Turns keep running after the client goes away; hold references until they finish.
_background_tasks: set[asyncio.Task] = set()


class ChatServiceError(Exception):
    pass


class BadRequestError(ChatServiceError):
    pass


class NotFoundError(ChatServiceError):
    pass


class ForbiddenError(ChatServiceError):
    pass


# --- Chat CRUD ---

async def get_chat_by_id(db: AsyncSession, chat_id: str) -> Chat | None:
    result = await db.execute(select(Chat).where(Chat.id == chat_id))
    return result.scalar_one_or_none()


async def save_chat(db: AsyncSession, chat_id: str, user_id: str, title: str) -> Chat:
    chat = Chat(id=chat_id, user_id=user_id, title=title)
    db.add(chat)
    await db.commit()
    await db.refresh(chat)
    return chat


async def list_chats(db: AsyncSession, user_id: str) -> list[dict]:
    result = await db.execute(
        select(Chat).where(Chat.user_id == user_id).order_by(Chat.created_at.desc())
    )
    return [_serialize_chat(c) for c in result.scalars().all()]


async def delete_chat_by_id(db: AsyncSession, chat_id: str, user_id: str) -> None:
    """Delete a chat with its messages, votes and PDF reference."""
    chat = await get_chat_by_id(db, chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    if chat.user_id != user_id:
        raise ForbiddenError("Chat belongs to another user")
    await db.delete(chat)
    await db.execute(delete(PdfReference).where(PdfReference.chat_id == chat_id))
    await db.commit()


# --- Messages ---

async def save_messages(db: AsyncSession, messages: list[dict]) -> None:
    """Append a batch of messages in one commit, preserving batch order."""
    db.add_all(
        Message(
            id=m["id"],
            chat_id=m["chat_id"],
            role=m["role"],
            content=m["content"],
            created_at=m.get("created_at") or datetime.now(timezone.utc),
            position=index,
        )
        for index, m in enumerate(messages)
    )
    await db.commit()


async def get_messages_by_chat_id(db: AsyncSession, chat_id: str) -> list[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.chat_id == chat_id)
        .order_by(Message.created_at.asc(), Message.position.asc())
    )
    return list(result.scalars().all())


def get_most_recent_user_message(messages: list[dict]) -> dict | None:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message
    return None


# --- Turn setup ---

async def prepare_turn(db: AsyncSession, chat_id: str, user_id: str, messages: list[dict]) -> dict:
    """Resolve the chat and persist the inbound user message.

    Raises BadRequestError before touching storage when there is no user message.
    """
    user_message = get_most_recent_user_message(messages)
    if user_message is None:
        raise BadRequestError("No user message found")

    chat = await get_chat_by_id(db, chat_id)
    if chat is None:
        title = await _generate_title(_message_text(user_message.get("content")))
        await save_chat(db, chat_id=chat_id, user_id=user_id, title=title)
    elif chat.user_id != user_id:
        raise ForbiddenError("Chat belongs to another user")

    await save_messages(db, [{
        "id": user_message.get("id") or str(uuid.uuid4()),
        "chat_id": chat_id,
        "role": "user",
        "content": user_message.get("content", ""),
        "created_at": datetime.now(timezone.utc),
    }])
    return user_message


async def _generate_title(text: str) -> str:
    try:
        title = await generate_title_from_user_message(text)
    except Exception:
        logger.exception("Title generation failed")
        title = ""
    return title or text.strip()[:80] or "New Chat"


# --- Streaming turn ---

async def stream_chat_turn(
    chat_id: str,
    user_id: str,
    messages: list[dict],
    selected_chat_model: str,
) -> AsyncIterator[str]:
    """Async generator of SSE frames for one turn.

    The model loop runs as its own task and writes into a DataStream; this
    generator only drains it. Disconnects and the turn timeout close the
    stream without cancelling the task, so in-flight tool writes complete.
    """
    stream = DataStream()
    task = asyncio.create_task(
        _run_turn(stream, chat_id, user_id, messages, selected_chat_model)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    loop = asyncio.get_running_loop()
    deadline = loop.time() + settings.max_duration_seconds
    try:
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise asyncio.TimeoutError
            frame = await stream.next_frame(timeout=remaining)
            if frame is None:
                break
            yield encode_frame(frame)
    except asyncio.TimeoutError:
        logger.warning("Chat %s exceeded %ss turn limit", chat_id, settings.max_duration_seconds)
        yield encode_frame({"type": "error", "content": ERROR_MESSAGE})
    finally:
        stream.close()


async def _run_turn(
    stream: DataStream,
    chat_id: str,
    user_id: str,
    messages: list[dict],
    selected_chat_model: str,
) -> None:
    tools = active_tools(selected_chat_model)
    ctx = ToolContext(user_id=user_id, data_stream=stream)
    model_messages = to_model_messages(messages)
    response_messages: list[dict] = []

    try:
        for _ in range(settings.max_steps):
            message_id = str(uuid.uuid4())
            await stream.write_data("message", message_id)

            parts, assistant_blocks, stop_reason = await _stream_step(
                stream, model_messages, tools, selected_chat_model
            )
            response_messages.append({"id": message_id, "role": "assistant", "content": parts})

            tool_calls = [p for p in parts if p["type"] == "tool-call"]
            if stop_reason != "tool_use" or not tool_calls:
                break

            model_messages.append({"role": "assistant", "content": assistant_blocks})
            tool_parts, tool_results = await _run_tools(tool_calls, ctx)
            response_messages.append({"id": str(uuid.uuid4()), "role": "tool", "content": tool_parts})
            model_messages.append({"role": "user", "content": tool_results})
    except Exception:
        logger.exception("Chat %s turn failed", chat_id)
        await stream.write_data("error", ERROR_MESSAGE)
        await stream.end()
        return

    await _persist_response(chat_id, response_messages)
    await stream.write_data("done", "")
    await stream.end()


async def _stream_step(
    stream: DataStream,
    model_messages: list[dict],
    tools: list[Tool],
    selected_chat_model: str,
) -> tuple[list[dict], list[dict], str | None]:
    """Run one model call, streaming tokens; returns (parts, assistant blocks, stop reason)."""
    client = get_anthropic_client()
    request: dict[str, Any] = {
        "model": model_for(selected_chat_model),
        "max_tokens": settings.max_tokens,
        "system": system_prompt(selected_chat_model),
        "messages": model_messages,
    }
    if tools:
        request["tools"] = [tool.schema() for tool in tools]
    if selected_chat_model == REASONING_MODEL_ID:
        request["thinking"] = {"type": "enabled", "budget_tokens": settings.reasoning_budget_tokens}

    reasoning = ""
    text = ""

    async with client.messages.stream(**request) as response:

        async def _text_events() -> AsyncIterator[str]:
            nonlocal reasoning
            async for event in response:
                if event.type == "thinking":
                    reasoning += event.thinking
                    await stream.write_data("reasoning", event.thinking)
                elif event.type == "text":
                    yield event.text

        async for word in smooth_stream(_text_events(), delay_ms=settings.stream_chunk_delay_ms):
            text += word
            await stream.write_data("delta", word)

        final = await response.get_final_message()

    parts: list[dict] = []
    if reasoning:
        parts.append({"type": "reasoning", "reasoning": reasoning})
    parts.append({"type": "text", "text": text})

    assistant_blocks: list[dict] = []
    for block in final.content:
        if block.type == "text" and block.text:
            assistant_blocks.append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            call = {"toolCallId": block.id, "toolName": block.name, "args": block.input}
            parts.append({"type": "tool-call", **call})
            await stream.write_data("tool-call", call)
            assistant_blocks.append(
                {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
            )

    return parts, assistant_blocks, final.stop_reason


async def _run_tools(tool_calls: list[dict], ctx: ToolContext) -> tuple[list[dict], list[dict]]:
    """Execute tool calls in order. Failures become error results for the model."""
    tool_parts: list[dict] = []
    tool_results: list[dict] = []
    for call in tool_calls:
        try:
            result = await execute_tool(call["toolName"], call["args"] or {}, ctx)
            is_error = False
        except ToolExecutionError as e:
            logger.warning("Tool %s failed: %s", call["toolName"], e)
            result = {"error": str(e)}
            is_error = True

        part = {
            "type": "tool-result",
            "toolCallId": call["toolCallId"],
            "toolName": call["toolName"],
            "result": result,
            "isError": is_error,
        }
        await ctx.data_stream.write_data("tool-result", part)
        tool_parts.append(part)
        tool_results.append({
            "type": "tool_result",
            "tool_use_id": call["toolCallId"],
            "content": json.dumps(result, default=str),
            "is_error": is_error,
        })
    return tool_parts, tool_results


async def _persist_response(chat_id: str, response_messages: list[dict]) -> None:
    """Save the sanitized response in its own session. Failures are only logged."""
    try:
        now = datetime.now(timezone.utc)
        rows = [
            {
                "id": m["id"],
                "chat_id": chat_id,
                "role": m["role"],
                "content": m["content"],
                "created_at": now,
            }
            for m in sanitize_response_messages(response_messages)
        ]
        if rows:
            async with async_session() as db:
                await save_messages(db, rows)
    except Exception:
        logger.exception("Failed to save chat %s", chat_id)


# --- Message shaping ---

def sanitize_response_messages(messages: list[dict]) -> list[dict]:
    """Drop unanswered tool calls, empty text and reasoning-only assistant messages."""
    answered = {
        part["toolCallId"]
        for m in messages
        if m["role"] == "tool"
        for part in m["content"]
        if part.get("type") == "tool-result"
    }

    sanitized = []
    for message in messages:
        if message["role"] == "assistant":
            parts = [
                p for p in message["content"]
                if (p["type"] == "tool-call" and p["toolCallId"] in answered)
                or (p["type"] == "text" and p.get("text"))
                or (p["type"] == "reasoning" and p.get("reasoning"))
            ]
            if all(p["type"] == "reasoning" for p in parts):
                continue
            message = {**message, "content": parts}
        elif not message["content"]:
            continue
        sanitized.append(message)
    return sanitized


def to_model_messages(messages: list[dict]) -> list[dict]:
    """Convert client messages to Anthropic's alternating user/assistant text turns."""
    converted: list[dict] = []
    for message in messages:
        role = message.get("role")
        if role not in ("user", "assistant"):
            continue
        text = _message_text(message.get("content"))
        if not text:
            continue
        if not converted and role != "user":
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"] += f"\n\n{text}"
        else:
            converted.append({"role": role, "content": text})
    return converted


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


# --- Helpers ---

def _serialize_chat(chat: Chat) -> dict:
    return {
        "id": chat.id,
        "title": chat.title,
        "userId": chat.user_id,
        "visibility": chat.visibility,
        "createdAt": chat.created_at.isoformat() if chat.created_at else None,
    }


def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "chatId": message.chat_id,
        "role": message.role,
        "content": message.content,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }
