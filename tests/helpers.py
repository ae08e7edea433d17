"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files::

    from tests.helpers import ScriptedCapability
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Iterable, Sequence

from pydantic import ValidationError

from codey.ai.errors import MalformedResponse, TransportFailure
from codey.ai.requests import GenerationRequest
from codey.services.persistence import ConversationSnapshot
from codey.session.events import Event, EventBus


class Gate:
    """Marker inside a stream script: the stream waits here until released."""

    def __init__(self) -> None:
        self.reached = asyncio.Event()
        self._released = asyncio.Event()

    def release(self) -> None:
        self._released.set()

    async def wait(self) -> None:
        self.reached.set()
        await self._released.wait()


class ScriptedCapability:
    """Remote capability stub driven by per-call scripts.

    Each ``stream_text`` call consumes the next script from ``streams``. A
    script item is a delta string, an exception to raise, or a :class:`Gate`.
    One-shot calls consume ``replies`` the same way.
    """

    def __init__(
        self,
        streams: Iterable[Sequence[Any]] = (),
        replies: Iterable[Any] = (),
    ) -> None:
        self.streams: list[Sequence[Any]] = list(streams)
        self.replies: list[Any] = list(replies)
        self.stream_requests: list[GenerationRequest] = []
        self.one_shot_requests: list[GenerationRequest] = []
        self.closed_streams = 0

    async def stream_text(self, request: GenerationRequest) -> AsyncIterator[str]:
        self.stream_requests.append(request)
        script = self.streams.pop(0) if self.streams else ()
        try:
            for item in script:
                if isinstance(item, Gate):
                    await item.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed_streams += 1

    async def complete_text(self, request: GenerationRequest) -> str:
        self.one_shot_requests.append(request)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Gate):
            await reply.wait()
            reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def complete_json(self, request: GenerationRequest, schema: type) -> Any:
        text = await self.complete_text(request)
        try:
            return schema.model_validate_json(text)
        except ValidationError as exc:
            raise MalformedResponse(str(exc)) from exc


class MemoryPersistence:
    """In-memory persistence collaborator that records every save."""

    def __init__(self, snapshot: ConversationSnapshot | None = None, *, fail_saves: bool = False) -> None:
        self.snapshot = snapshot
        self.fail_saves = fail_saves
        self.fail_load = False
        self.saves: list[ConversationSnapshot] = []

    def load(self) -> ConversationSnapshot | None:
        if self.fail_load:
            raise OSError("storage unavailable")
        return self.snapshot

    def save(self, snapshot: ConversationSnapshot) -> None:
        if self.fail_saves:
            raise OSError("disk full")
        self.saves.append(snapshot)


class EventRecorder:
    """Collects published events of the given types, in order."""

    def __init__(self, bus: EventBus, *event_types: type[Event]) -> None:
        self.events: list[Event] = []
        for event_type in event_types:
            bus.subscribe(event_type, self._record)

    def _record(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[Event]) -> list[Any]:
        return [event for event in self.events if isinstance(event, event_type)]


def transport_error(message: str = "connection reset") -> TransportFailure:
    return TransportFailure(message)
