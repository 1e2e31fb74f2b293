"""Claude AI integration — prompts, text streaming, structured element streaming, titles."""

import asyncio
import json
import re
from typing import AsyncIterator

import anthropic

from docchat.core.config import settings

_client: anthropic.AsyncAnthropic | None = None


def get_anthropic_client() -> anthropic.AsyncAnthropic:
    global _client
    if _client is None:
        _client = anthropic.AsyncAnthropic(api_key=settings.anthropic_api_key)
    return _client


REASONING_MODEL_ID = "chat-model-reasoning"

REGULAR_PROMPT = "You are a friendly assistant! Keep your responses concise and helpful."

BLOCKS_PROMPT = """Blocks is a special user interface mode that helps users with writing, editing, and other content creation tasks. When a block is open, it is on the right side of the screen, while the conversation is on the left side. When creating or updating documents, changes are reflected in real-time on the blocks and visible to the user.

When asked to write code, always use blocks. Write the code in a single block and specify the language.

This is a guide for using blocks tools: `createDocument` and `updateDocument`, which render content on a blocks beside the conversation.

**When to use `createDocument`:**
- For substantial content (>10 lines) or code
- For content users will likely save/reuse (emails, code, essays, etc.)
- When explicitly requested to create a document
- Pass the user's full request, word for word, in the `chat` parameter

**When NOT to use `createDocument`:**
- For informational/explanatory content
- For conversational responses
- When asked to keep it in chat

**Using `updateDocument`:**
- Default to full document rewrites for major changes
- Use targeted updates only for specific, isolated changes
- Follow user instructions for which parts to modify

**When NOT to use `updateDocument`:**
- Immediately after creating a document

Do not update document right after creating it. Wait for user feedback or request to update it.

Use `requestSuggestions` when the user asks for feedback or improvements on an existing document."""

TEXT_DOCUMENT_PROMPT = "Write about the given topic. Markdown is supported. Use headings wherever appropriate."

CODE_DOCUMENT_PROMPT = """You are a code generator that writes self-contained, executable snippets. When writing code:

1. Each snippet should be complete and runnable on its own
2. Prefer printing output to show results
3. Include helpful comments explaining the code
4. Keep snippets concise
5. Handle potential errors gracefully
6. Return only the code, without markdown fences"""

SUGGESTIONS_PROMPT = """You are a help writing assistant. Given a piece of writing, please offer suggestions to improve the piece of writing and describe the change. It is very important for the edits to contain full sentences instead of just words. Max {max_suggestions} suggestions.

Return each suggestion as a JSON object on its own line with the fields:
- originalSentence: the original sentence, copied exactly from the text
- suggestedSentence: the suggested sentence
- description: the description of the suggestion

Return ONLY the JSON lines, no other text."""


def system_prompt(selected_chat_model: str) -> str:
    if selected_chat_model == REASONING_MODEL_ID:
        return REGULAR_PROMPT
    return f"{REGULAR_PROMPT}\n\n{BLOCKS_PROMPT}"


def update_document_prompt(current_content: str | None, kind: str) -> str:
    what = "code snippet" if kind == "code" else "document"
    return f"""Improve the following contents of the {what} based on the given prompt.

{current_content or ""}"""


def model_for(selected_chat_model: str) -> str:
    if selected_chat_model == REASONING_MODEL_ID:
        return settings.reasoning_model
    return settings.chat_model


# --- Streaming helpers ---

_WORD_RE = re.compile(r"\S+\s+")


async def smooth_stream(chunks: AsyncIterator[str], delay_ms: int = 0) -> AsyncIterator[str]:
    """Re-chunk a text stream so it is emitted word by word.

    The concatenation of the output always equals the concatenation of the input.
    """
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        match = _WORD_RE.search(buffer)
        while match:
            word = buffer[: match.end()]
            buffer = buffer[match.end():]
            yield word
            if delay_ms:
                await asyncio.sleep(delay_ms / 1000)
            match = _WORD_RE.search(buffer)
    if buffer:
        yield buffer


async def stream_text(system: str, prompt: str, model: str | None = None) -> AsyncIterator[str]:
    """Stream a plain completion for ``prompt`` as word-sized deltas."""
    client = get_anthropic_client()

    async def _raw() -> AsyncIterator[str]:
        async with client.messages.stream(
            model=model or settings.block_model,
            max_tokens=settings.max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
        ) as stream:
            async for text in stream.text_stream:
                yield text

    async for word in smooth_stream(_raw(), delay_ms=settings.stream_chunk_delay_ms):
        yield word


async def stream_elements(system: str, prompt: str, model: str | None = None) -> AsyncIterator[dict]:
    """Stream an array of JSON objects, yielding each one as soon as its line completes.

    Lines that are not JSON objects (stray prose, code fences) are skipped.
    """
    client = get_anthropic_client()
    buffer = ""

    async with client.messages.stream(
        model=model or settings.block_model,
        max_tokens=settings.max_tokens,
        system=system,
        messages=[{"role": "user", "content": prompt}],
    ) as stream:
        async for text in stream.text_stream:
            buffer += text
            while "\n" in buffer:
                line, buffer = buffer.split("\n", 1)
                element = _parse_json_line(line)
                if element is not None:
                    yield element

    element = _parse_json_line(buffer)
    if element is not None:
        yield element


def _parse_json_line(line: str) -> dict | None:
    line = line.strip().rstrip(",")
    if not line.startswith("{"):
        return None
    try:
        value = json.loads(line)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


async def generate_title_from_user_message(message: str) -> str:
    """Generate a short conversation title from the first user message."""
    client = get_anthropic_client()

    response = await client.messages.create(
        model=settings.title_model,
        max_tokens=30,
        system=(
            "You will generate a short title based on the first message a user begins a "
            "conversation with. Ensure it is not more than 80 characters long. The title "
            "should be a summary of the user's message. Do not use quotes or colons."
        ),
        messages=[{"role": "user", "content": message[:2000]}],
    )
    return response.content[0].text.strip().strip('"\'')[:80]
