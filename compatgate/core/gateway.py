"""FastAPI app factory."""

from __future__ import annotations

import hmac
import inspect

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from compatgate.adapters.openai_compat.router import router as openai_router
from compatgate.config.settings import settings
from compatgate.core.context import GatewayConfig
from compatgate.core.errors import AuthInvalidError, AuthMissingError, CompatGateError
from compatgate.core.language_model import APIKeyVerifier, ModelResolver
from compatgate.providers.mock import MockLanguageModel
from compatgate.util.logger import logger


_AUTH_EXEMPT_PATHS = frozenset({"/health"})
_STREAM_TOOL_CALL_POLICIES = frozenset({"first", "all"})


def _error_response(status_code: int, code: str, detail: str | None = None) -> JSONResponse:
    detail_text = (detail or code).strip() or code
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": detail_text,
                "type": "compatgate_error",
                "code": code,
            },
        },
    )


async def compatgate_error_handler(request: Request, exc: CompatGateError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request failed path=%s code=%s error=%s", request.url.path, exc.code, exc)
    else:
        logger.info("request rejected path=%s code=%s error=%s", request.url.path, exc.code, exc)
    return _error_response(exc.status_code, exc.code, str(exc))


def _route_path(request: Request) -> str:
    # 被宿主 mount 到前缀下时，path 带有 root_path 前缀
    path = request.url.path
    root_path = request.scope.get("root_path") or ""
    if root_path and path.startswith(root_path):
        return path[len(root_path):] or "/"
    return path


def _bearer_key(header: str) -> str:
    scheme, _, key = header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return ""
    return key.strip()


async def api_key_middleware(request: Request, call_next):
    """Gate every route except health behind the configured key predicate.

    Runs before routing, so the body is never read for rejected requests.
    """

    config: GatewayConfig = request.app.state.compatgate
    verify = config.verify_api_key
    if verify is None or _route_path(request) in _AUTH_EXEMPT_PATHS:
        return await call_next(request)

    header = request.headers.get("authorization")
    if not header:
        logger.warning("auth reject missing header path=%s", request.url.path)
        return _error_response(AuthMissingError.status_code, AuthMissingError.code, "Missing Authorization header")

    key = _bearer_key(header)
    valid = verify(key) if key else False
    if inspect.isawaitable(valid):
        valid = await valid
    if not valid:
        logger.warning("auth reject invalid key path=%s", request.url.path)
        return _error_response(AuthInvalidError.status_code, AuthInvalidError.code, "Invalid API key")
    return await call_next(request)


def health() -> dict:
    return {"status": "ok"}


def create_app(
    language_models: ModelResolver,
    *,
    verify_api_key: APIKeyVerifier | None = None,
    stream_tool_calls: str | None = None,
    title: str | None = None,
) -> FastAPI:
    """Build an app serving ``POST /v1/chat/completions`` over ``language_models``.

    ``language_models`` is either a mapping from model id to model or a
    callable (sync or async) returning a model or ``None``. When
    ``verify_api_key`` is given, requests must carry
    ``Authorization: Bearer <key>`` accepted by it. The returned app can be
    served directly or mounted under a prefix by a host app.
    """

    tool_call_policy = stream_tool_calls or settings.stream_tool_calls
    if tool_call_policy not in _STREAM_TOOL_CALL_POLICIES:
        raise ValueError(f"stream_tool_calls must be one of {sorted(_STREAM_TOOL_CALL_POLICIES)}, got {tool_call_policy!r}")

    app = FastAPI(title=title or settings.app_name)
    app.state.compatgate = GatewayConfig(
        language_models=language_models,
        verify_api_key=verify_api_key,
        stream_tool_calls=tool_call_policy,
    )
    app.include_router(openai_router, prefix="/v1")
    app.add_api_route("/health", health, methods=["GET"])
    app.add_exception_handler(CompatGateError, compatgate_error_handler)
    app.middleware("http")(api_key_middleware)
    logger.info(
        "app created title=%s auth=%s stream_tool_calls=%s",
        app.title,
        verify_api_key is not None,
        app.state.compatgate.stream_tool_calls,
    )
    return app


def build_default_app() -> FastAPI:
    """uvicorn factory: ``uvicorn --factory compatgate.core.gateway:build_default_app``."""

    model = MockLanguageModel(settings.mock_model_id)
    verifier = None
    if settings.api_key:
        expected = settings.api_key

        def verifier(key: str) -> bool:
            return hmac.compare_digest(key.encode("utf-8"), expected.encode("utf-8"))

    return create_app({model.model_id: model}, verify_api_key=verifier)
