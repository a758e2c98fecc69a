"""OpenAI chat-completion request shapes accepted on the wire.

Messages are discriminated on ``role`` and content parts on ``type``, so a
body that validates here is one of a closed set of shapes the mapper knows
how to translate. Fields the gateway does not translate (``n``, ``user``,
``logit_bias`` ...) are accepted and ignored.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class TextContentPart(BaseModel):
    type: Literal["text"]
    text: str


class RefusalContentPart(BaseModel):
    type: Literal["refusal"]
    refusal: str


class ImageURL(BaseModel):
    url: str
    detail: str | None = None


class ImageURLContentPart(BaseModel):
    type: Literal["image_url"]
    image_url: ImageURL


class FileRef(BaseModel):
    file_data: str | None = None
    file_id: str | None = None
    filename: str | None = None


class FileContentPart(BaseModel):
    type: Literal["file"]
    file: FileRef


class InputAudio(BaseModel):
    data: str
    format: str


class InputAudioContentPart(BaseModel):
    type: Literal["input_audio"]
    input_audio: InputAudio


UserContentPart = Annotated[
    Union[TextContentPart, ImageURLContentPart, FileContentPart, InputAudioContentPart],
    Field(discriminator="type"),
]
AssistantContentPart = Annotated[Union[TextContentPart, RefusalContentPart], Field(discriminator="type")]


class SystemMessageParam(BaseModel):
    role: Literal["system"]
    content: str | list[TextContentPart]
    name: str | None = None


class DeveloperMessageParam(BaseModel):
    role: Literal["developer"]
    content: str | list[TextContentPart]
    name: str | None = None


class UserMessageParam(BaseModel):
    role: Literal["user"]
    content: str | list[UserContentPart]
    name: str | None = None


class AssistantMessageParam(BaseModel):
    role: Literal["assistant"]
    content: str | list[AssistantContentPart] | None = None
    name: str | None = None


class ToolMessageParam(BaseModel):
    role: Literal["tool"]
    content: str | list[TextContentPart]
    tool_call_id: str


class FunctionMessageParam(BaseModel):
    """Deprecated ``function`` role, still sent by older clients."""

    role: Literal["function"]
    content: str | None = None
    name: str | None = None


WireMessage = Annotated[
    Union[
        SystemMessageParam,
        DeveloperMessageParam,
        UserMessageParam,
        AssistantMessageParam,
        ToolMessageParam,
        FunctionMessageParam,
    ],
    Field(discriminator="role"),
]


class FunctionDefinition(BaseModel):
    name: str
    description: str | None = None
    parameters: dict[str, Any] | None = None


class FunctionToolParam(BaseModel):
    type: Literal["function"] = "function"
    function: FunctionDefinition


class NamedFunction(BaseModel):
    name: str


class NamedToolChoice(BaseModel):
    type: Literal["function"] = "function"
    function: NamedFunction


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[WireMessage]
    stream: bool | None = None
    temperature: float | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    seed: int | None = None
    stop: str | list[str] | None = None
    tools: list[FunctionToolParam] | None = None
    tool_choice: Literal["auto", "none", "required"] | NamedToolChoice | None = None
