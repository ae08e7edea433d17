"""Streaming session actor.

Owns one session's binding to the remote generation capability: turns a user
submit into a request, feeds the returned deltas into an in-place assistant
message, and finalizes or replaces that message when the stream ends.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from ..ai.ai_types import GenerationCapability
from ..ai.errors import CodeyError, StreamInProgress, TransportFailure, UserInputRejected
from ..ai.modes import ModeProfile
from ..ai.requests import GenerationRequest, Turn, turn_from_message
from ..chat.message_model import Attachment
from .events import EventBus, StreamCompleted, StreamFailed, StreamStarted
from .store import ConversationStore

LOGGER = logging.getLogger(__name__)

TITLE_MAX_CHARS = 40
UNTITLED_TITLE = "Untitled Chat"


class StreamState(Enum):
    """Lifecycle of one exchange.

    Values:
        IDLE: No exchange started yet.
        AWAITING_FIRST_DELTA: Request sent, nothing received.
        STREAMING: At least one delta applied.
        FINALIZED: Stream ended; the reply is frozen.
        ERRORED: Stream failed; the reply was replaced by an error notice.
        ABANDONED: The binding was replaced while the stream was open.
    """

    IDLE = "idle"
    AWAITING_FIRST_DELTA = "awaiting_first_delta"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    ERRORED = "errored"
    ABANDONED = "abandoned"

    @property
    def in_flight(self) -> bool:
        return self in (StreamState.AWAITING_FIRST_DELTA, StreamState.STREAMING)


@dataclass(slots=True)
class TurnOutcome:
    """Result of one submit."""

    session_id: str
    user_message_id: int
    assistant_message_id: int | None
    state: StreamState
    text: str = ""
    error: str | None = None


def derive_title(text: str, attachment: Attachment | None) -> str | None:
    """Return the session title for a first exchange, or None to keep it.

    Uses the first line of the submitted text, falling back to the
    attachment name when the text is blank.
    """
    if text.strip():
        source = text
    elif attachment is not None:
        source = f"File: {attachment.name or 'Analysis'}"
    else:
        return None
    return source.split("\n")[0][:TITLE_MAX_CHARS] or UNTITLED_TITLE


class StreamingSessionActor:
    """Binding between one session and the remote capability.

    The actor is tagged with the controller generation it was created for.
    Before every store mutation it asks ``is_current`` whether that
    generation is still live; once it is not, deltas are dropped.
    """

    def __init__(
        self,
        *,
        session_id: str,
        generation: int,
        store: ConversationStore,
        capability: GenerationCapability,
        profile: ModeProfile,
        history: tuple[Turn, ...],
        event_bus: EventBus,
        is_current: Callable[[int], bool],
        temperature: float | None = None,
    ) -> None:
        self._session_id = session_id
        self._generation = generation
        self._store = store
        self._capability = capability
        self._profile = profile
        self._history = history
        self._bus = event_bus
        self._is_current = is_current
        self._temperature = temperature
        self._state = StreamState.IDLE
        self._assistant_message_id: int | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def profile(self) -> ModeProfile:
        return self._profile

    @property
    def history(self) -> tuple[Turn, ...]:
        return self._history

    @property
    def is_stale(self) -> bool:
        return self._state is StreamState.ABANDONED or not self._is_current(self._generation)

    # ------------------------------------------------------------------
    # Exchange Lifecycle
    # ------------------------------------------------------------------

    def build_request(self, turn: Turn) -> GenerationRequest:
        return GenerationRequest(
            model=self._profile.model,
            system_prompt=self._profile.system_prompt,
            history=(*self._history, turn),
            thinking_effort=self._profile.thinking_effort,
            temperature=self._temperature,
        )

    async def submit(self, text: str, attachment: Attachment | None = None) -> TurnOutcome:
        """Send a user turn and stream the reply into the store.

        Raises:
            UserInputRejected: If ``text`` is blank and there is no attachment.
            StreamInProgress: If a reply in this session is still streaming,
                or the binding has already been replaced.
        """
        if not text.strip() and attachment is None:
            raise UserInputRejected("Empty submit without attachment")
        if self.is_stale:
            raise StreamInProgress("Session binding was replaced; submit through the controller")
        if self._state.in_flight or self._store.streaming_message(self._session_id) is not None:
            raise StreamInProgress(f"Session {self._session_id} is still streaming")

        session = self._store.get_session(self._session_id)
        is_first_exchange = not session.messages

        user_message = self._store.append_user_message(self._session_id, text, attachment)
        user_turn = turn_from_message(user_message)
        request = self.build_request(user_turn)
        placeholder = self._store.append_assistant_placeholder(self._session_id)
        self._assistant_message_id = placeholder.id
        self._state = StreamState.AWAITING_FIRST_DELTA

        LOGGER.debug(
            "StreamingSessionActor.submit: session=%s, generation=%d, model=%s, history=%d",
            self._session_id,
            self._generation,
            request.model,
            len(request.history),
        )

        try:
            await self._consume(request, placeholder.id)
        except asyncio.CancelledError:
            self.abandon()
            raise
        except Exception as exc:
            return self._fail(user_message.id, placeholder.id, exc)

        if self.is_stale:
            LOGGER.debug("StreamingSessionActor: stream ended after abandonment, session=%s", self._session_id)
            return TurnOutcome(
                session_id=self._session_id,
                user_message_id=user_message.id,
                assistant_message_id=placeholder.id,
                state=StreamState.ABANDONED,
            )

        final = self._store.finalize_message(self._session_id, placeholder.id)
        self._state = StreamState.FINALIZED
        self._history = request.with_turn(turn_from_message(final)).history
        if is_first_exchange:
            title = derive_title(text, attachment)
            if title:
                self._store.rename_session(self._session_id, title)
        self._bus.publish(StreamCompleted(session_id=self._session_id, message_id=final.id, text=final.text))
        return TurnOutcome(
            session_id=self._session_id,
            user_message_id=user_message.id,
            assistant_message_id=final.id,
            state=StreamState.FINALIZED,
            text=final.text,
        )

    def abandon(self) -> None:
        """Detach from the session, freezing whatever reply was in flight.

        A reply that never received a delta is removed; a partial reply is
        finalized as-is. Deltas arriving afterwards are discarded.
        """
        was_in_flight = self._state.in_flight
        self._state = StreamState.ABANDONED
        message_id = self._assistant_message_id
        if not was_in_flight or message_id is None:
            return
        try:
            message = self._store.get_message(self._session_id, message_id)
        except CodeyError:
            return
        LOGGER.debug(
            "StreamingSessionActor.abandon: session=%s, message=%s, chars=%d",
            self._session_id,
            message_id,
            len(message.text),
        )
        if message.text:
            self._store.finalize_message(self._session_id, message_id)
        else:
            self._store.remove_message(self._session_id, message_id)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    async def _consume(self, request: GenerationRequest, message_id: int) -> None:
        stream = self._capability.stream_text(request)
        try:
            async for delta in stream:
                if self.is_stale:
                    LOGGER.debug(
                        "StreamingSessionActor: dropping late delta for session=%s, generation=%d",
                        self._session_id,
                        self._generation,
                    )
                    break
                if not delta:
                    continue
                if self._state is StreamState.AWAITING_FIRST_DELTA:
                    self._state = StreamState.STREAMING
                    self._bus.publish(StreamStarted(session_id=self._session_id, message_id=message_id))
                self._store.append_to_message(self._session_id, message_id, delta)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _fail(self, user_message_id: int, placeholder_id: int, exc: Exception) -> TurnOutcome:
        if self.is_stale:
            LOGGER.debug("StreamingSessionActor: ignoring failure after abandonment: %s", exc)
            return TurnOutcome(
                session_id=self._session_id,
                user_message_id=user_message_id,
                assistant_message_id=None,
                state=StreamState.ABANDONED,
                error=str(exc),
            )

        LOGGER.warning(
            "StreamingSessionActor: stream failed, session=%s, error=%s",
            self._session_id,
            exc,
        )
        notice = TransportFailure.user_message
        session = self._store.get_session(self._session_id)
        if session.find_message(placeholder_id) is not None:
            self._store.remove_message(self._session_id, placeholder_id)
        error_message = self._store.append_assistant_message(self._session_id, notice)
        self._state = StreamState.ERRORED
        self._bus.publish(
            StreamFailed(session_id=self._session_id, message_id=error_message.id, error=str(exc))
        )
        return TurnOutcome(
            session_id=self._session_id,
            user_message_id=user_message_id,
            assistant_message_id=error_message.id,
            state=StreamState.ERRORED,
            text=notice,
            error=str(exc),
        )


__all__ = ["StreamState", "StreamingSessionActor", "TurnOutcome", "derive_title"]
