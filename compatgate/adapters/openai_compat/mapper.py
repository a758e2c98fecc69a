"""OpenAI <-> canonical model mapping."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import Any, Literal, Optional
from urllib.parse import urlparse

from compatgate.adapters.openai_compat.schemas import (
    AssistantMessageParam,
    ChatCompletionRequest,
    DeveloperMessageParam,
    FileContentPart,
    FunctionMessageParam,
    FunctionToolParam,
    ImageURLContentPart,
    InputAudioContentPart,
    NamedToolChoice,
    RefusalContentPart,
    SystemMessageParam,
    TextContentPart,
    ToolMessageParam,
    UserMessageParam,
)
from compatgate.core.errors import MalformedURLError, UnsupportedMessageShapeError
from compatgate.core.models import (
    CanonicalMessage,
    ContentPart,
    FilePart,
    FinishReason,
    GenerationResult,
    ImagePart,
    ModelInvocationRequest,
    TextPart,
    ToolChoice,
    ToolChoiceTool,
    ToolDefinition,
    ToolResultPart,
    Usage,
)


WireFinishReason = Optional[Literal["stop", "length", "tool_calls", "content_filter", "function_call"]]

# OpenAI 没有 "unknown" 之类的终止态，不明确的原因一律按 stop 处理；function_call 仅为兼容保留，不会产出
FINISH_REASON_MAP: Mapping[FinishReason, WireFinishReason] = MappingProxyType(
    {
        "length": "length",
        "stop": "stop",
        "content-filter": "content_filter",
        "tool-calls": "tool_calls",
        "unknown": "stop",
        "error": "stop",
        "other": "stop",
    }
)

_AUDIO_MIME_TYPES = MappingProxyType({"mp3": "audio/mpeg"})
_DEFAULT_AUDIO_MIME_TYPE = "audio/wav"
_HOST_REQUIRED_SCHEMES = frozenset({"http", "https", "ws", "wss", "ftp"})
_WHITESPACE_RE = re.compile(r"\s")


def map_finish_reason(reason: FinishReason) -> WireFinishReason:
    return FINISH_REASON_MAP[reason]


def _parse_url(raw: str) -> str:
    candidate = raw.strip()
    if not candidate or _WHITESPACE_RE.search(candidate):
        raise MalformedURLError(f"invalid image url: {raw[:80]!r}")
    try:
        parsed = urlparse(candidate)
    except ValueError as exc:
        raise MalformedURLError(f"invalid image url: {raw[:80]!r}") from exc
    if not parsed.scheme:
        raise MalformedURLError(f"image url has no scheme: {raw[:80]!r}")
    if parsed.scheme.lower() in _HOST_REQUIRED_SCHEMES and not parsed.netloc:
        raise MalformedURLError(f"image url has no host: {raw[:80]!r}")
    return parsed.geturl()


def _join_text(parts: Iterable[TextContentPart | RefusalContentPart]) -> str:
    chunks = []
    for part in parts:
        if isinstance(part, TextContentPart):
            chunks.append(part.text)
        elif isinstance(part, RefusalContentPart):
            chunks.append(part.refusal)
        else:
            raise UnsupportedMessageShapeError(f"unsupported text part: {type(part).__name__}")
    return "".join(chunks)


def _user_part(part: object) -> ContentPart:
    if isinstance(part, TextContentPart):
        return TextPart(text=part.text)
    if isinstance(part, ImageURLContentPart):
        return ImagePart(image=_parse_url(part.image_url.url))
    if isinstance(part, FileContentPart):
        return FilePart(data=part.file.file_data or "", mime_type=None)
    if isinstance(part, InputAudioContentPart):
        audio = part.input_audio
        return FilePart(
            data=audio.data,
            mime_type=_AUDIO_MIME_TYPES.get(audio.format, _DEFAULT_AUDIO_MIME_TYPE),
        )
    raise UnsupportedMessageShapeError(f"unsupported user content part: {type(part).__name__}")


def normalize_message(message: object) -> CanonicalMessage:
    """Translate one wire message into exactly one canonical message.

    Assistant content is flattened to text; user content keeps its part
    boundaries; ``developer`` and the deprecated ``function`` role both become
    ``system``. Anything outside the known roles fails loudly.
    """

    if isinstance(message, AssistantMessageParam):
        content = message.content
        if not content:
            return CanonicalMessage(role="assistant", content="")
        if isinstance(content, str):
            return CanonicalMessage(role="assistant", content=content)
        return CanonicalMessage(role="assistant", content=_join_text(content))

    if isinstance(message, UserMessageParam):
        if isinstance(message.content, str):
            return CanonicalMessage(role="user", content=message.content)
        return CanonicalMessage(role="user", content=[_user_part(part) for part in message.content])

    if isinstance(message, (SystemMessageParam, DeveloperMessageParam)):
        if isinstance(message.content, str):
            return CanonicalMessage(role="system", content=message.content)
        return CanonicalMessage(role="system", content=_join_text(message.content))

    if isinstance(message, FunctionMessageParam):
        return CanonicalMessage(role="system", content=message.content or "")

    if isinstance(message, ToolMessageParam):
        if isinstance(message.content, str):
            return CanonicalMessage(role="tool", content=[])
        return CanonicalMessage(
            role="tool",
            content=[
                ToolResultPart(
                    tool_call_id=message.tool_call_id,
                    tool_name=message.tool_call_id,
                    result=part.text,
                )
                for part in message.content
            ],
        )

    role = getattr(message, "role", None)
    raise UnsupportedMessageShapeError(f"unsupported message: role={role!r} type={type(message).__name__}")


def _stop_sequences(stop: str | list[str] | None) -> list[str] | None:
    if not stop:
        return None
    if isinstance(stop, str):
        return [stop]
    return list(stop)


def _tool_definitions(tools: list[FunctionToolParam] | None) -> dict[str, ToolDefinition] | None:
    if tools is None:
        return None
    return {
        tool.function.name: ToolDefinition(
            description=tool.function.description,
            parameters=tool.function.parameters,
        )
        for tool in tools
    }


def _tool_choice(choice: str | NamedToolChoice | None) -> ToolChoice | None:
    if choice is None:
        return None
    if isinstance(choice, NamedToolChoice):
        return ToolChoiceTool(tool_name=choice.function.name)
    return choice


def to_invocation_request(body: ChatCompletionRequest) -> ModelInvocationRequest:
    max_tokens = body.max_completion_tokens if body.max_completion_tokens is not None else body.max_tokens
    return ModelInvocationRequest(
        messages=[normalize_message(item) for item in body.messages],
        temperature=body.temperature,
        top_p=body.top_p,
        frequency_penalty=body.frequency_penalty,
        presence_penalty=body.presence_penalty,
        max_tokens=max_tokens,
        seed=body.seed,
        stop_sequences=_stop_sequences(body.stop),
        tools=_tool_definitions(body.tools),
        tool_choice=_tool_choice(body.tool_choice),
    )


def to_usage_payload(usage: Usage) -> dict[str, int]:
    return {
        "completion_tokens": usage.output_tokens,
        "prompt_tokens": usage.input_tokens,
        "total_tokens": usage.total_tokens,
    }


def to_chat_response(result: GenerationResult) -> dict[str, Any]:
    output: dict[str, Any] = {
        "id": result.response.id,
        "object": "chat.completion",
        "created": int(result.response.timestamp.timestamp()),
        "model": result.response.model_id,
        "choices": [
            {
                "index": 0,
                "finish_reason": map_finish_reason(result.finish_reason),
                "logprobs": None,
                "message": {
                    "role": "assistant",
                    "content": result.text,
                    "refusal": "",
                    "tool_calls": [
                        {
                            "id": call.tool_call_id,
                            "type": "function",
                            "function": {"name": call.tool_name, "arguments": call.args},
                        }
                        for call in result.tool_calls
                    ],
                },
            }
        ],
    }
    # usage 缺失时整个字段省略，而不是填 0
    if result.usage is not None:
        output["usage"] = to_usage_payload(result.usage)
    return output
