"""Per-app configuration and per-request runtime context."""

from __future__ import annotations

from dataclasses import dataclass, field
from time import time

from compatgate.core.language_model import APIKeyVerifier, ModelResolver


@dataclass(slots=True, frozen=True)
class GatewayConfig:
    language_models: ModelResolver
    verify_api_key: APIKeyVerifier | None = None
    stream_tool_calls: str = "first"


@dataclass(slots=True)
class RequestContext:
    request_id: str
    route: str
    model: str = ""
    stream: bool = False
    started_at: float = field(default_factory=time)

    def elapsed_ms(self) -> int:
        return int((time() - self.started_at) * 1000)
