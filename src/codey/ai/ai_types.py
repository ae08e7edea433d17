"""Shared typing contracts for the remote generation capability."""

from __future__ import annotations

from typing import AsyncIterator, Protocol, TypeVar

from pydantic import BaseModel

from .requests import GenerationRequest

ModelT = TypeVar("ModelT", bound=BaseModel)


class GenerationCapability(Protocol):
    """Protocol describing the remote model service.

    Implementations raise :class:`~codey.ai.errors.TransportFailure` for any
    network or provider error and :class:`~codey.ai.errors.MalformedResponse`
    when a JSON reply fails validation.
    """

    def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        """Yield text deltas in order until the stream ends."""
        ...

    async def complete_text(self, request: GenerationRequest) -> str:
        """Return one complete reply."""
        ...

    async def complete_json(self, request: GenerationRequest, schema: type[ModelT]) -> ModelT:
        """Return a reply parsed and validated against ``schema``."""
        ...


__all__ = ["GenerationCapability", "ModelT"]
