"""
流式 SSE 与 chunk 构建。把 provider 的事件序列翻译成 chat.completion.chunk，
从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import json
import time
import uuid
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterable, AsyncIterator, Iterable, Literal

from fastapi.responses import StreamingResponse

from compatgate.adapters.openai_compat.mapper import WireFinishReason, map_finish_reason, to_usage_payload
from compatgate.core.models import (
    ErrorEvent,
    FinishEvent,
    GenerationEvent,
    TextDeltaEvent,
    ToolCallEvent,
    Usage,
)
from compatgate.util.logger import logger


ToolCallPolicy = Literal["first", "all"]


class StreamState(str, Enum):
    STREAMING = "streaming"
    DONE = "done"


def _stream_chunk_payload(
    model: str,
    delta: dict[str, Any],
    finish_reason: WireFinishReason,
    usage: Usage | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "object": "chat.completion.chunk",
        "created": int(time.time()),
        "model": model,
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage is not None:
        payload["usage"] = to_usage_payload(usage)
    return payload


def _stream_sse_chunk(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _stream_done_sse_chunk() -> bytes:
    return b"data: [DONE]\n\n"


def _extract_sse_data_payload(line: bytes) -> str | None:
    if not line:
        return None
    stripped = line.strip()
    if not stripped.startswith(b"data:"):
        return None
    return stripped[5:].strip().decode("utf-8", errors="replace")


class StreamTranslator:
    """Two-state machine from generation events to chat.completion.chunk payloads.

    ``STREAMING`` pulls one event at a time and emits at most one chunk per
    event. ``finish``/``error`` (and, under the ``"first"`` policy, the first
    ``tool-call``) move to ``DONE``, after which nothing more is pulled. The
    event source is closed on every exit path, including the consumer
    closing the generator early.
    """

    def __init__(
        self,
        events: AsyncIterable[GenerationEvent],
        model_id: str,
        *,
        tool_call_policy: ToolCallPolicy = "first",
        request_id: str = "",
    ) -> None:
        self._events: AsyncIterator[GenerationEvent] = events.__aiter__()
        self.model_id = model_id
        self.tool_call_policy = tool_call_policy
        self.request_id = request_id
        self.state = StreamState.STREAMING
        self._tool_call_index = 0
        self.emitted = 0

    def step(self, event: GenerationEvent) -> dict[str, Any] | None:
        if self.state is StreamState.DONE:
            raise RuntimeError("stream translator already finished")

        if isinstance(event, TextDeltaEvent):
            return _stream_chunk_payload(
                self.model_id,
                {"role": "assistant", "content": event.text_delta},
                None,
            )

        if isinstance(event, ToolCallEvent):
            index = self._tool_call_index
            self._tool_call_index += 1
            finish_reason: WireFinishReason = None
            if self.tool_call_policy == "first":
                self.state = StreamState.DONE
                finish_reason = "stop"
            return _stream_chunk_payload(
                self.model_id,
                {
                    "role": "assistant",
                    "tool_calls": [
                        {
                            "index": index,
                            "id": event.tool_call_id,
                            "type": "function",
                            "function": {"name": event.tool_name, "arguments": event.args},
                        }
                    ],
                },
                finish_reason,
            )

        if isinstance(event, FinishEvent):
            self.state = StreamState.DONE
            return _stream_chunk_payload(self.model_id, {}, map_finish_reason(event.finish_reason), event.usage)

        if isinstance(event, ErrorEvent):
            self.state = StreamState.DONE
            logger.warning("chat stream provider error request_id=%s error=%r", self.request_id, event.error)
            return _stream_chunk_payload(self.model_id, {}, "stop")

        raise TypeError(f"unsupported generation event: {type(event).__name__}")

    async def _release(self) -> None:
        aclose = getattr(self._events, "aclose", None)
        if aclose is not None:
            await aclose()

    async def chunks(self) -> AsyncGenerator[dict[str, Any], None]:
        try:
            while self.state is StreamState.STREAMING:
                try:
                    event = await self._events.__anext__()
                except StopAsyncIteration:
                    # 上游未给出终止事件就结束：直接进入 DONE，不补发 chunk
                    self.state = StreamState.DONE
                    break
                except Exception as exc:
                    logger.error("chat stream provider failure request_id=%s error=%s", self.request_id, exc)
                    event = ErrorEvent(error=exc)

                chunk = self.step(event)
                if chunk is not None:
                    self.emitted += 1
                    yield chunk
        finally:
            await self._release()
            logger.debug(
                "chat stream closed request_id=%s state=%s chunks=%d",
                self.request_id,
                self.state.value,
                self.emitted,
            )

    async def sse(self) -> AsyncGenerator[bytes, None]:
        chunks = self.chunks()
        try:
            async for chunk in chunks:
                yield _stream_sse_chunk(chunk)
        finally:
            await chunks.aclose()
        yield _stream_done_sse_chunk()


def _build_streaming_response(generator: Iterable[bytes] | AsyncIterable[bytes]) -> StreamingResponse:
    return StreamingResponse(
        generator,
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
