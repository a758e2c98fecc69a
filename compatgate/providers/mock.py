"""Mock provider for testing and local demos."""

from __future__ import annotations

import re
from collections.abc import AsyncIterator, Iterable, Sequence

from compatgate.core.models import (
    FinishEvent,
    FinishReason,
    GenerationEvent,
    GenerationResult,
    ModelInvocationRequest,
    ResponseMetadata,
    TextDeltaEvent,
    TextPart,
    ToolCall,
    ToolCallEvent,
    Usage,
)


_STREAM_PIECE_RE = re.compile(r"\S+\s*|\s+")


def _last_user_text(request: ModelInvocationRequest) -> str:
    for message in reversed(request.messages):
        if message.role != "user":
            continue
        if isinstance(message.content, str):
            return message.content
        return " ".join(part.text for part in message.content if isinstance(part, TextPart))
    return ""


class MockLanguageModel:
    """Model without API calls.

    Replies with ``text`` when given, otherwise echoes the last user text.
    ``events`` overrides the stream entirely; ``error`` makes ``generate``
    raise. Every invocation request is recorded on ``requests``.
    """

    def __init__(
        self,
        model_id: str = "mock-echo",
        *,
        text: str | None = None,
        finish_reason: FinishReason = "stop",
        usage: Usage | None = None,
        tool_calls: Sequence[ToolCall] = (),
        events: Iterable[GenerationEvent] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._model_id = model_id
        self.text = text
        self.finish_reason = finish_reason
        self.usage = usage
        self.tool_calls = list(tool_calls)
        self.events = list(events) if events is not None else None
        self.error = error
        self.requests: list[ModelInvocationRequest] = []

    @property
    def model_id(self) -> str:
        return self._model_id

    def _reply(self, request: ModelInvocationRequest) -> str:
        return self.text if self.text is not None else _last_user_text(request)

    async def generate(self, request: ModelInvocationRequest) -> GenerationResult:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return GenerationResult(
            text=self._reply(request),
            finish_reason=self.finish_reason,
            usage=self.usage,
            tool_calls=self.tool_calls,
            response=ResponseMetadata(model_id=self.model_id),
        )

    async def stream(self, request: ModelInvocationRequest) -> AsyncIterator[GenerationEvent]:
        self.requests.append(request)
        if self.events is not None:
            for event in self.events:
                yield event
            return
        for piece in _STREAM_PIECE_RE.findall(self._reply(request)):
            yield TextDeltaEvent(text_delta=piece)
        for call in self.tool_calls:
            yield ToolCallEvent(tool_call_id=call.tool_call_id, tool_name=call.tool_name, args=call.args)
        yield FinishEvent(finish_reason=self.finish_reason, usage=self.usage)
