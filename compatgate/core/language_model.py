"""Provider protocol: the minimal interface the gateway invokes."""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Protocol, Union, runtime_checkable

from compatgate.core.models import GenerationEvent, GenerationResult, ModelInvocationRequest


@runtime_checkable
class LanguageModel(Protocol):
    """Minimal model protocol: generate once, or stream generation events."""

    @property
    def model_id(self) -> str:
        """Resolved model identifier reported back to clients."""
        ...

    async def generate(self, request: ModelInvocationRequest) -> GenerationResult:
        """Run one complete generation."""
        ...

    def stream(self, request: ModelInvocationRequest) -> AsyncIterator[GenerationEvent]:
        """Return the live event sequence for one generation.

        The sequence ends after exactly one ``finish`` or ``error`` event.
        Async generators are preferred: the gateway calls ``aclose()`` on
        whatever it is given once it stops reading.
        """
        ...


ModelLookup = Callable[[str], Union[LanguageModel, None, Awaitable[Union[LanguageModel, None]]]]
ModelResolver = Union[Mapping[str, LanguageModel], ModelLookup]

APIKeyVerifier = Callable[[str], Union[bool, Awaitable[bool]]]
