"""OpenAI <-> upstream chat backend mapping."""

from __future__ import annotations

import time
import uuid
from typing import Any

from auibridge.config.settings import Settings
from auibridge.core.models import (
    AssistantMessage,
    ChatCompletion,
    ChatCompletionChunk,
    ChatRequest,
    ChunkChoice,
    ChunkDelta,
    CompletionChoice,
    ModelCard,
    ModelList,
    UpstreamMessage,
    UpstreamPart,
    UpstreamPayload,
)


# The backend requires a tool declaration on every call; it is never invoked.
_TOOL_DECLARATION: dict[str, Any] = {
    "weather_search": {
        "description": "Find weather",
        "parameters": {
            "type": "object",
            "properties": {"query": {"type": "string"}},
        },
    }
}


def _message_id() -> str:
    return uuid.uuid4().hex[:8]


def new_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def to_upstream_payload(chat_request: ChatRequest, settings: Settings) -> UpstreamPayload:
    messages = [
        UpstreamMessage(
            role=message.role,
            parts=[UpstreamPart(text=message.content)],
            id=_message_id(),
        )
        for message in chat_request.messages
    ]
    metadata: dict[str, Any] = {}
    if settings.echo_model_in_metadata and chat_request.model:
        metadata["model"] = chat_request.model

    return UpstreamPayload(
        tools=_TOOL_DECLARATION,
        id=settings.upstream_thread_id,
        messages=messages,
        trigger=settings.upstream_trigger,
        metadata=metadata,
    )


def to_chat_chunk(completion_id: str, model: str, content: str, created: int | None = None) -> ChatCompletionChunk:
    return ChatCompletionChunk(
        id=completion_id,
        created=int(time.time()) if created is None else created,
        model=model,
        choices=[ChunkChoice(delta=ChunkDelta(content=content))],
    )


def to_chat_completion(model: str, content: str, completion_id: str | None = None) -> ChatCompletion:
    return ChatCompletion(
        id=completion_id or new_completion_id(),
        created=int(time.time()),
        model=model,
        choices=[CompletionChoice(message=AssistantMessage(content=content))],
    )


def to_model_list(settings: Settings) -> ModelList:
    created = int(time.time())
    return ModelList(
        data=[ModelCard(id=model_id, created=created, owned_by=settings.model_owner) for model_id in settings.model_ids]
    )
