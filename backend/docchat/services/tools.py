"""Model-invokable tools — document creation/update, suggestions and weather lookup.

Every tool declares a pydantic parameter model. Arguments coming from the model
are validated before execution, and any failure inside a tool is raised as
``ToolExecutionError`` so the turn can hand it back to the model as a failed
tool result instead of aborting the stream.
"""

import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from docchat.core.config import settings
from docchat.core.database import async_session
from docchat.integrations.anthropic_client import (
    REASONING_MODEL_ID,
    SUGGESTIONS_PROMPT,
    stream_elements,
)
from docchat.services.data_stream import DataStream
from docchat.services.document_handlers import DocumentKind, get_document_handler
from docchat.services.document_service import get_document_by_id, save_document, save_suggestions

logger = logging.getLogger(__name__)

WEATHER_API_URL = "https://api.open-meteo.com/v1/forecast"


class ToolExecutionError(Exception):
    pass


@dataclass(frozen=True)
class ToolContext:
    user_id: str
    data_stream: DataStream


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    parameters: type[BaseModel]
    execute: Callable[[Any, ToolContext], Awaitable[dict]]
    read_only: bool = False

    def schema(self) -> dict:
        """Tool declaration in the Anthropic ``tools`` format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": _inline_refs(self.parameters.model_json_schema()),
        }


def _inline_refs(schema: dict) -> dict:
    defs = schema.pop("$defs", {})

    def resolve(node):
        if isinstance(node, dict):
            ref = node.get("$ref")
            if ref and ref.startswith("#/$defs/"):
                return resolve(defs[ref.split("/")[-1]])
            return {k: resolve(v) for k, v in node.items()}
        if isinstance(node, list):
            return [resolve(v) for v in node]
        return node

    return resolve(schema)


# ---------------------------------------------------------------------------
# Parameter schemas
# ---------------------------------------------------------------------------

class CreateDocumentParams(BaseModel):
    title: str
    task: str = Field(description="Additional task content")
    chat: str = Field(description="The user's full chat input, word for word")
    kind: DocumentKind


class UpdateDocumentParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", description="The ID of the document to update")
    description: str = Field(description="The description of changes that need to be made")


class RequestSuggestionsParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", description="The ID of the document to request edits")


class GetWeatherParams(BaseModel):
    latitude: float
    longitude: float


class SuggestionElement(BaseModel):
    originalSentence: str = Field(description="The original sentence")
    suggestedSentence: str = Field(description="The suggested sentence")
    description: str = Field(description="The description of the suggestion")


# ---------------------------------------------------------------------------
# Tool implementations
# ---------------------------------------------------------------------------

async def create_document(params: CreateDocumentParams, ctx: ToolContext) -> dict:
    handler = get_document_handler(params.kind)
    document_id = str(uuid.uuid4())
    stream = ctx.data_stream

    await stream.write_data("kind", params.kind.value)
    await stream.write_data("id", document_id)
    await stream.write_data("title", params.title)
    await stream.write_data("task", params.task)
    await stream.write_data("chat", params.chat)
    await stream.write_data("clear", "")

    try:
        content = await handler.on_create(params.title, params.task, params.chat, stream)
        async with async_session() as db:
            await save_document(
                db,
                document_id=document_id,
                title=params.title,
                kind=params.kind.value,
                content=content,
                user_id=ctx.user_id,
            )
    finally:
        await stream.write_data("finish", "")

    return {
        "id": document_id,
        "title": params.title,
        "kind": params.kind.value,
        "content": "A document was created and is now visible to the user.",
    }


async def update_document(params: UpdateDocumentParams, ctx: ToolContext) -> dict:
    async with async_session() as db:
        document = await get_document_by_id(db, params.document_id)
    if document is None or document.user_id != ctx.user_id:
        raise ToolExecutionError(f"Document not found: {params.document_id}")

    handler = get_document_handler(document.kind)
    stream = ctx.data_stream

    await stream.write_data("clear", document.title)
    try:
        content = await handler.on_update(document, params.description, stream)
        async with async_session() as db:
            await save_document(
                db,
                document_id=document.id,
                title=document.title,
                kind=document.kind,
                content=content,
                user_id=ctx.user_id,
            )
    finally:
        await stream.write_data("finish", "")

    return {
        "id": document.id,
        "title": document.title,
        "kind": document.kind,
        "content": "The document has been updated successfully.",
    }


async def request_suggestions(params: RequestSuggestionsParams, ctx: ToolContext) -> dict:
    async with async_session() as db:
        document = await get_document_by_id(db, params.document_id)

    if document is None or document.user_id != ctx.user_id or not document.content:
        return {"error": "Document not found"}

    suggestions: list[dict] = []
    elements = stream_elements(
        SUGGESTIONS_PROMPT.format(max_suggestions=settings.max_suggestions),
        document.content,
    )
    async with aclosing(elements):
        async for element in elements:
            try:
                parsed = SuggestionElement.model_validate(element)
            except ValidationError:
                logger.warning("Skipping malformed suggestion for document %s", document.id)
                continue

            suggestion = {
                "id": str(uuid.uuid4()),
                "documentId": document.id,
                "originalText": parsed.originalSentence,
                "suggestedText": parsed.suggestedSentence,
                "description": parsed.description,
                "isResolved": False,
            }
            await ctx.data_stream.write_data("suggestion", suggestion)
            suggestions.append(suggestion)

            if len(suggestions) >= settings.max_suggestions:
                break

    if ctx.user_id and suggestions:
        async with async_session() as db:
            await save_suggestions(db, [
                {
                    "id": s["id"],
                    "document_id": s["documentId"],
                    "document_created_at": document.created_at,
                    "original_text": s["originalText"],
                    "suggested_text": s["suggestedText"],
                    "description": s["description"],
                    "is_resolved": False,
                    "user_id": ctx.user_id,
                }
                for s in suggestions
            ])

    return {
        "id": document.id,
        "title": document.title,
        "kind": document.kind,
        "message": "Suggestions have been added to the document",
    }


async def get_weather(params: GetWeatherParams, ctx: ToolContext) -> dict:
    async with httpx.AsyncClient(timeout=10) as client:
        response = await client.get(
            WEATHER_API_URL,
            params={
                "latitude": params.latitude,
                "longitude": params.longitude,
                "current": "temperature_2m",
                "hourly": "temperature_2m",
                "daily": "sunrise,sunset",
                "timezone": "auto",
            },
        )
        response.raise_for_status()
        return response.json()


# ---------------------------------------------------------------------------
# Registry & dispatch
# ---------------------------------------------------------------------------

TOOLS: Mapping[str, Tool] = {
    tool.name: tool
    for tool in (
        Tool(
            name="getWeather",
            description="Get the current weather at a location",
            parameters=GetWeatherParams,
            execute=get_weather,
            read_only=True,
        ),
        Tool(
            name="createDocument",
            description=(
                "Create a document for a writing or content creation activity. This tool will "
                "call other functions that will generate the contents of the document based on "
                "the title, task, and the entire chat input."
            ),
            parameters=CreateDocumentParams,
            execute=create_document,
        ),
        Tool(
            name="updateDocument",
            description="Update a document with the given description.",
            parameters=UpdateDocumentParams,
            execute=update_document,
        ),
        Tool(
            name="requestSuggestions",
            description="Request suggestions for a document",
            parameters=RequestSuggestionsParams,
            execute=request_suggestions,
        ),
    )
}


def active_tools(selected_chat_model: str) -> list[Tool]:
    """Tools offered to the model; the reasoning model gets none."""
    if selected_chat_model == REASONING_MODEL_ID:
        return []
    return list(TOOLS.values())


async def execute_tool(
    name: str,
    arguments: dict,
    ctx: ToolContext,
    tools: Mapping[str, Tool] = TOOLS,
) -> dict:
    tool = tools.get(name)
    if tool is None:
        raise ToolExecutionError(f"Unknown tool: {name}")

    try:
        params = tool.parameters.model_validate(arguments)
    except ValidationError as e:
        raise ToolExecutionError(f"Invalid arguments for {name}: {e}") from e

    try:
        return await tool.execute(params, ctx)
    except ToolExecutionError:
        raise
    except Exception as e:
        logger.exception("Tool %s failed", name)
        raise ToolExecutionError(str(e)) from e
