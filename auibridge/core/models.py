"""Transport models for the OpenAI side and the upstream chat backend."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def _flatten_content(content: Any) -> str:
    """Keep plain text only; structured parts other than text are dropped."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: list[str] = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "".join(texts)
    if isinstance(content, dict):
        text = content.get("text")
        return text if isinstance(text, str) else ""
    return str(content)


class ChatMessage(BaseModel):
    role: str = "user"
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _coerce_role(cls, value: Any) -> str:
        if value is None or value == "":
            return "user"
        return str(value)

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        return _flatten_content(value)


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(default_factory=list)
    model: str = ""
    stream: bool = False

    @field_validator("messages", mode="before")
    @classmethod
    def _default_messages(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("model", mode="before")
    @classmethod
    def _coerce_model(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator("stream", mode="before")
    @classmethod
    def _strict_stream_flag(cls, value: Any) -> bool:
        return value is True

    def last_user_text(self) -> str:
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""


class UpstreamPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class UpstreamMessage(BaseModel):
    role: str
    parts: list[UpstreamPart]
    id: str


class UpstreamPayload(BaseModel):
    tools: dict[str, Any] = Field(default_factory=dict)
    id: str
    messages: list[UpstreamMessage] = Field(default_factory=list)
    trigger: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class ChunkDelta(BaseModel):
    content: str


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChunkDelta
    finish_reason: str | None = None


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: list[ChunkChoice]


class AssistantMessage(BaseModel):
    role: Literal["assistant"] = "assistant"
    content: str


class CompletionChoice(BaseModel):
    index: int = 0
    message: AssistantMessage
    finish_reason: str = "stop"


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletion(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: list[CompletionChoice]
    usage: Usage = Field(default_factory=Usage)


class ModelCard(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelCard] = Field(default_factory=list)


TEXT_DELTA = "text-delta"


@dataclass(frozen=True, slots=True)
class TextDelta:
    text: str


@dataclass(frozen=True, slots=True)
class IgnoredEvent:
    kind: str


UpstreamEvent = TextDelta | IgnoredEvent


def parse_upstream_event(data: str) -> UpstreamEvent | None:
    """Parse one `data:` payload; None means the line was not a JSON object."""
    try:
        event = json.loads(data)
    except json.JSONDecodeError:
        return None
    if not isinstance(event, dict):
        return None

    kind = str(event.get("type") or "")
    if kind == TEXT_DELTA:
        delta = event.get("delta")
        if isinstance(delta, str) and delta:
            return TextDelta(text=delta)
    # Unknown kinds (start, finish, tool events, ...) are deliberately a no-op.
    return IgnoredEvent(kind=kind)
