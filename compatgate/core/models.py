"""Canonical, provider-agnostic models shared by the adapters and providers."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


FinishReason = Literal["length", "stop", "content-filter", "tool-calls", "unknown", "error", "other"]


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    image: str


class FilePart(BaseModel):
    type: Literal["file"] = "file"
    data: str
    # None 表示调用方未声明 MIME 类型，由 provider 自行判断
    mime_type: str | None = None


class ToolResultPart(BaseModel):
    type: Literal["tool-result"] = "tool-result"
    tool_call_id: str
    tool_name: str
    result: str


ContentPart = Annotated[Union[TextPart, ImagePart, FilePart, ToolResultPart], Field(discriminator="type")]


class CanonicalMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str | list[ContentPart]


class ToolDefinition(BaseModel):
    type: Literal["function"] = "function"
    description: str | None = None
    parameters: dict[str, Any] | None = None


class ToolChoiceTool(BaseModel):
    type: Literal["tool"] = "tool"
    tool_name: str


ToolChoice = Union[Literal["auto", "none", "required"], ToolChoiceTool]


class ModelInvocationRequest(BaseModel):
    """Everything a provider needs for one generation.

    Sampling fields left as ``None`` mean "use the provider default".
    """

    messages: list[CanonicalMessage] = Field(default_factory=list)
    temperature: float | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    max_tokens: int | None = None
    seed: int | None = None
    stop_sequences: list[str] | None = None
    tools: dict[str, ToolDefinition] | None = None
    tool_choice: ToolChoice | None = None


class Usage(BaseModel):
    input_tokens: int
    output_tokens: int
    total_tokens: int


class ToolCall(BaseModel):
    tool_call_id: str
    tool_name: str
    # 参数保持 provider 给出的原始 JSON 字符串，不做解析
    args: str


def _new_response_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=_new_response_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    model_id: str


class GenerationResult(BaseModel):
    text: str = ""
    finish_reason: FinishReason
    usage: Usage | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    response: ResponseMetadata


class TextDeltaEvent(BaseModel):
    type: Literal["text-delta"] = "text-delta"
    text_delta: str


class ToolCallEvent(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: str


class FinishEvent(BaseModel):
    type: Literal["finish"] = "finish"
    finish_reason: FinishReason
    usage: Usage | None = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: Any = None


GenerationEvent = Annotated[
    Union[TextDeltaEvent, ToolCallEvent, FinishEvent, ErrorEvent],
    Field(discriminator="type"),
]
