"""Session controller: owns the replaceable actor binding and the chat mode."""

from __future__ import annotations

import logging
from typing import Mapping

from ..ai.ai_types import GenerationCapability
from ..ai.modes import ChatMode, ModeProfile, resolve_profile
from ..ai.requests import history_from_messages
from ..chat.message_model import Attachment, ChatSession
from .actor import StreamingSessionActor, TurnOutcome
from .events import ChatModeChanged, EventBus
from .store import ConversationStore

LOGGER = logging.getLogger(__name__)

MODE_CONFIG_KEY = "mode"


class SessionController:
    """Coordinates the conversation store with the current streaming actor.

    Exactly one actor is current at a time. Every time the binding is
    replaced (new session, session switch, mode change, or a completed
    exchange) the generation counter is bumped and the previous actor is
    abandoned, so a stream that is still open can no longer touch the store.

    Events Emitted:
        - ChatModeChanged: When the active mode changes
    """

    def __init__(
        self,
        store: ConversationStore,
        capability: GenerationCapability,
        event_bus: EventBus,
        *,
        mode: ChatMode | str = ChatMode.VIBE,
        mode_models: Mapping[str, str] | None = None,
        temperature: float | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            store: Conversation store the actors write into.
            capability: Remote generation capability.
            event_bus: The event bus for publishing events.
            mode: Initial chat mode, used unless the store remembers one.
            mode_models: Optional per-mode model overrides.
            temperature: Optional sampling temperature for chat requests.
        """
        self._store = store
        self._capability = capability
        self._bus = event_bus
        self._mode = ChatMode.parse(mode)
        self._mode_models = dict(mode_models or {})
        self._temperature = temperature
        self._generation = 0
        self._actor: StreamingSessionActor | None = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def capability(self) -> GenerationCapability:
        return self._capability

    @property
    def actor(self) -> StreamingSessionActor | None:
        return self._actor

    @property
    def mode(self) -> ChatMode:
        return self._mode

    @property
    def profile(self) -> ModeProfile:
        return resolve_profile(self._mode, self._mode_models)

    @property
    def is_streaming(self) -> bool:
        return self._actor is not None and self._actor.state.in_flight

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> ChatSession:
        """Load persisted conversations and bind to the active session."""
        session = self._store.load()
        remembered = self._store.ui_config.get(MODE_CONFIG_KEY)
        if remembered:
            try:
                self._mode = ChatMode.parse(remembered)
            except ValueError:
                LOGGER.warning("Ignoring unknown stored chat mode: %r", remembered)
        self.rebind(session.id)
        return session

    def rebind(self, session_id: str | None = None) -> StreamingSessionActor:
        """Replace the current actor with a fresh one for ``session_id``.

        Defaults to the store's active session. The history snapshot is taken
        from the store after the previous actor has been abandoned.
        """
        self._invalidate()
        if session_id is None:
            session_id = self._store.ensure_session().id
        session = self._store.get_session(session_id)
        history = history_from_messages(message for message in session.messages if not message.streaming)
        self._actor = StreamingSessionActor(
            session_id=session_id,
            generation=self._generation,
            store=self._store,
            capability=self._capability,
            profile=self.profile,
            history=history,
            event_bus=self._bus,
            is_current=self.is_current,
            temperature=self._temperature,
        )
        LOGGER.debug(
            "SessionController.rebind: session=%s, generation=%d, mode=%s, history=%d",
            session_id,
            self._generation,
            self._mode.value,
            len(history),
        )
        return self._actor

    def shutdown(self) -> None:
        """Abandon any open stream; used when the front-end exits."""
        self._invalidate()
        self._actor = None

    # ------------------------------------------------------------------
    # Conversation Operations
    # ------------------------------------------------------------------

    async def submit(self, text: str, attachment: Attachment | None = None) -> TurnOutcome:
        """Submit a user turn to the active session.

        Raises:
            UserInputRejected: If there is nothing to send.
            StreamInProgress: If the active session is still streaming.
        """
        actor = self._actor
        active_id = self._store.active_session_id
        # A cancelled submit leaves its actor abandoned but still bound.
        if actor is None or actor.session_id != active_id or actor.is_stale:
            actor = self.rebind(active_id)
        outcome = await actor.submit(text, attachment)
        # The history changed, so the next turn gets a fresh binding.
        if actor is self._actor:
            self.rebind(actor.session_id)
        return outcome

    def new_chat(self) -> ChatSession:
        session = self._store.create_session()
        self.rebind(session.id)
        return session

    def select_session(self, session_id: str) -> ChatSession:
        session = self._store.select_session(session_id)
        if self._actor is None or self._actor.session_id != session_id:
            self.rebind(session_id)
        return session

    def delete_session(self, session_id: str) -> ChatSession:
        """Delete a session and return the session that is now active.

        Deleting the last session leaves the store with one fresh session.
        """
        if self._actor is not None and self._actor.session_id == session_id:
            self._invalidate()
            self._actor = None
        active_id = self._store.delete_session(session_id)
        if active_id is None:
            session = self._store.create_session()
        else:
            session = self._store.get_session(active_id)
        if self._actor is None or self._actor.session_id != session.id:
            self.rebind(session.id)
        return session

    def rename_session(self, session_id: str, title: str) -> None:
        self._store.rename_session(session_id, title)

    def set_mode(self, mode: ChatMode | str) -> ChatMode:
        """Switch the chat mode, abandoning any open stream.

        Raises:
            ValueError: If ``mode`` is not a known mode name.
        """
        resolved = ChatMode.parse(mode)
        if resolved is self._mode:
            return resolved
        self._mode = resolved
        self._store.update_ui_config({MODE_CONFIG_KEY: resolved.value})
        self._bus.publish(ChatModeChanged(mode=resolved.value))
        self.rebind(self._actor.session_id if self._actor is not None else None)
        return resolved

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _invalidate(self) -> None:
        self._generation += 1
        if self._actor is not None:
            self._actor.abandon()


__all__ = ["MODE_CONFIG_KEY", "SessionController"]
