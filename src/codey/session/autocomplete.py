"""Debounced completion suggestions for the chat input."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ..ai import prompts
from ..ai.ai_types import GenerationCapability
from ..ai.modes import ModeProfile
from ..ai.requests import one_shot_request
from .events import EventBus, SuggestionReady

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SuggestionPolicy:
    """When a suggestion is worth requesting.

    Attributes:
        min_length: Inputs shorter than this (after trimming) are ignored.
        suppress_on_trailing_space: Skip inputs that end in whitespace.
        debounce_seconds: Quiet period before a request is sent.
    """

    min_length: int = 5
    suppress_on_trailing_space: bool = True
    debounce_seconds: float = 0.4

    def allows(self, text: str) -> bool:
        if len(text.strip()) < self.min_length:
            return False
        if self.suppress_on_trailing_space and text[-1:].isspace():
            return False
        return True


class Autocomplete:
    """Keyed-by-generation suggestion requests.

    Every keystroke bumps the input generation. Only a response whose
    generation is still the latest is published; anything older is dropped.

    Events Emitted:
        - SuggestionReady: When the latest request produced a suggestion
    """

    def __init__(
        self,
        capability: GenerationCapability,
        event_bus: EventBus,
        *,
        profile_provider: Callable[[], ModeProfile],
        policy: SuggestionPolicy | None = None,
    ) -> None:
        self._capability = capability
        self._bus = event_bus
        self._profile_provider = profile_provider
        self._policy = policy or SuggestionPolicy()
        self._generation = 0
        self._pending: asyncio.Task[str | None] | None = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def policy(self) -> SuggestionPolicy:
        return self._policy

    def on_input(self, text: str) -> asyncio.Task[str | None] | None:
        """Record an input change and schedule a debounced suggestion.

        Must be called from a running event loop. Returns the scheduled task,
        or None when the policy suppresses the input.
        """
        self._generation += 1
        self.cancel_pending()
        if not self._policy.allows(text):
            return None
        self._pending = asyncio.create_task(self._debounced(self._generation, text))
        return self._pending

    def cancel_pending(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def suggest(self, text: str) -> str | None:
        """Request a suggestion for ``text`` right away (no debounce)."""
        self._generation += 1
        if not self._policy.allows(text):
            return None
        return await self._request(self._generation, text)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _debounced(self, generation: int, text: str) -> str | None:
        await asyncio.sleep(self._policy.debounce_seconds)
        if generation != self._generation:
            return None
        return await self._request(generation, text)

    async def _request(self, generation: int, text: str) -> str | None:
        profile = self._profile_provider()
        request = one_shot_request(
            model=profile.model,
            system_prompt=prompts.SYSTEM_INSTRUCTION,
            prompt=prompts.completion_prompt(text),
        )
        try:
            reply = await self._capability.complete_text(request)
        except Exception as exc:
            LOGGER.debug("Autocomplete request failed: %s", exc)
            return None
        if generation != self._generation:
            LOGGER.debug("Autocomplete: dropping stale suggestion for generation %d", generation)
            return None
        suggestion = reply.strip()
        if not suggestion:
            return None
        self._bus.publish(SuggestionReady(generation=generation, suggestion=suggestion))
        return suggestion


__all__ = ["Autocomplete", "SuggestionPolicy"]
