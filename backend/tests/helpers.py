"""Test doubles and helpers shared by the test modules."""

import asyncio
import json
from types import SimpleNamespace


class FakeStream:
    """Stands in for ``AsyncMessageStream``: async events, ``text_stream``, final message."""

    def __init__(self, events, final):
        self._events = events
        self._final = final

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def _iterate(self):
        for event in self._events:
            yield event

    def __aiter__(self):
        return self._iterate()

    @property
    def text_stream(self):
        async def _text():
            for event in self._events:
                if event.type == "text":
                    yield event.text
        return _text()

    async def get_final_message(self):
        return self._final


class FakeMessages:
    def __init__(self):
        self.responses: list = []
        self.stream_calls: list[dict] = []
        self.create_calls: list[dict] = []
        self.title = "Generated title"

    def stream(self, **kwargs):
        self.stream_calls.append(kwargs)
        if not self.responses:
            raise AssertionError("No scripted model response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def create(self, **kwargs):
        self.create_calls.append(kwargs)
        if isinstance(self.title, Exception):
            raise self.title
        return SimpleNamespace(content=[SimpleNamespace(type="text", text=self.title)])


class FakeAnthropic:
    def __init__(self):
        self.messages = FakeMessages()

    def script(self, *responses):
        self.messages.responses.extend(responses)


def model_response(*chunks, tool_uses=(), thinking=(), stop_reason=None):
    """A scripted streamed model reply.

    ``tool_uses`` is a sequence of ``(id, name, input)`` tuples.
    """
    events = [SimpleNamespace(type="thinking", thinking=t) for t in thinking]
    events += [SimpleNamespace(type="text", text=c) for c in chunks]
    content = []
    if chunks:
        content.append(SimpleNamespace(type="text", text="".join(chunks)))
    for tool_id, name, tool_input in tool_uses:
        content.append(SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input))
    final = SimpleNamespace(
        content=content,
        stop_reason=stop_reason or ("tool_use" if tool_uses else "end_turn"),
    )
    return FakeStream(events, final)


def json_lines(*objects):
    """A scripted structured reply: one JSON object per line."""
    return model_response("\n".join(json.dumps(o) for o in objects) + "\n")


def parse_sse(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith("data: ")
    ]


def run_db(coro_fn):
    """Run ``coro_fn(session)`` against the test database on a fresh loop."""
    from docchat.core import database

    async def _run():
        async with database.async_session() as db:
            return await coro_fn(db)

    return asyncio.run(_run())


class RecordingStream:
    """DataStream stand-in that keeps every frame."""

    def __init__(self):
        self.frames: list[dict] = []

    async def write_data(self, type, content=""):
        self.frames.append({"type": type, "content": content})

    async def write(self, frame):
        self.frames.append(frame)

    @property
    def types(self) -> list[str]:
        return [f["type"] for f in self.frames]
