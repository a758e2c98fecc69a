"""OpenAI-compatible routes."""

from __future__ import annotations

import inspect
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from compatgate.adapters.openai_compat.mapper import to_chat_response, to_invocation_request
from compatgate.adapters.openai_compat.schemas import ChatCompletionRequest
from compatgate.adapters.openai_compat.stream_utils import StreamTranslator, _build_streaming_response
from compatgate.config.settings import settings
from compatgate.core.context import GatewayConfig, RequestContext
from compatgate.core.errors import CompatGateError, InvalidModelError, MalformedRequestError, ProviderError
from compatgate.core.language_model import LanguageModel, ModelResolver
from compatgate.observability.logging import log_event
from compatgate.util.logger import logger


router = APIRouter()
_CHAT_ROUTE = "/v1/chat/completions"

# 调试时完整请求内容最大输出长度，避免日志过长
_DEBUG_REQUEST_BODY_MAX_CHARS = 32000
_DEBUG_HEADERS_REDACT = frozenset({"authorization", "proxy-authorization", "cookie"})


def _log_request_if_debug(request: Request, payload: Any, route: str) -> None:
    """DEBUG 级别时打印请求概要；正文只在 log_full_request_body 打开时输出（截断）。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    headers_safe = {}
    for k, v in request.headers.items():
        key_lower = k.lower()
        if key_lower in _DEBUG_HEADERS_REDACT or "key" in key_lower or "secret" in key_lower or "token" in key_lower:
            headers_safe[k] = "***"
        else:
            headers_safe[k] = v
    try:
        body_str = json.dumps(payload, ensure_ascii=False, indent=2)
    except (TypeError, ValueError):
        body_str = str(payload)
    logger.debug(
        "incoming request method=%s path=%s route=%s headers=%s body_size=%d",
        request.method,
        request.url.path,
        route,
        headers_safe,
        len(body_str),
    )
    if settings.log_full_request_body:
        logger.debug("incoming request body:\n%s", body_str[:_DEBUG_REQUEST_BODY_MAX_CHARS])


async def _read_chat_request(request: Request) -> tuple[Any, ChatCompletionRequest]:
    try:
        payload = await request.json()
    except ValueError as exc:
        raise MalformedRequestError(f"request body is not valid JSON: {exc}") from exc
    try:
        body = ChatCompletionRequest.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(loc) for loc in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()[:5]
        )
        raise MalformedRequestError(f"invalid chat completion request: {problems}") from exc
    return payload, body


async def resolve_model(resolver: ModelResolver, model_id: str) -> LanguageModel:
    """Look a model up in a static mapping or through a (possibly async) resolver."""

    if isinstance(resolver, Mapping):
        model = resolver.get(model_id)
    else:
        model = resolver(model_id)
        if inspect.isawaitable(model):
            model = await model
    if model is None:
        raise InvalidModelError(f"Invalid model: {model_id}")
    return model


def _gateway_config(request: Request) -> GatewayConfig:
    return request.app.state.compatgate


@router.post("/chat/completions")
async def chat_completions(request: Request):
    payload, body = await _read_chat_request(request)
    _log_request_if_debug(request, payload, _CHAT_ROUTE)
    config = _gateway_config(request)

    model = await resolve_model(config.language_models, body.model)
    invocation = to_invocation_request(body)
    ctx = RequestContext(
        request_id=str(uuid.uuid4()),
        route=_CHAT_ROUTE,
        model=model.model_id,
        stream=bool(body.stream),
    )
    log_event(
        "chat_completion",
        request_id=ctx.request_id,
        requested_model=body.model,
        model=ctx.model,
        stream=ctx.stream,
        messages=len(invocation.messages),
        tools=len(invocation.tools or {}),
    )

    if ctx.stream:
        try:
            events = model.stream(invocation)
        except Exception as exc:
            logger.error("chat stream open failed request_id=%s model=%s error=%s", ctx.request_id, ctx.model, exc)
            raise ProviderError(str(exc) or type(exc).__name__) from exc
        translator = StreamTranslator(
            events,
            model.model_id,
            tool_call_policy=config.stream_tool_calls,
            request_id=ctx.request_id,
        )
        return _build_streaming_response(translator.sse())

    try:
        result = await model.generate(invocation)
    except CompatGateError:
        raise
    except Exception as exc:
        logger.error("chat generate failed request_id=%s model=%s error=%s", ctx.request_id, ctx.model, exc)
        raise ProviderError(str(exc) or type(exc).__name__) from exc

    logger.info(
        "chat completion done request_id=%s model=%s finish_reason=%s elapsed_ms=%d",
        ctx.request_id,
        result.response.model_id,
        result.finish_reason,
        ctx.elapsed_ms(),
    )
    return JSONResponse(content=to_chat_response(result))
