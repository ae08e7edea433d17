"""Conversation store domain service.

Holds every session and message in memory and is the single source of truth
the renderers read from. Every mutation is persisted through the persistence
collaborator; persistence failures are logged and never propagate.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from ..ai.errors import MessageFinalizedError, MessageNotFound, SessionNotFound, StreamInProgress
from ..chat.message_model import (
    DEFAULT_SESSION_TITLE,
    Attachment,
    ChatMessage,
    ChatSession,
    new_session_id,
    next_message_id,
    reserve_message_ids,
)
from ..chat.segments import segment_text
from ..services.persistence import ConversationPersistence, ConversationSnapshot
from .events import (
    ActiveSessionChanged,
    EventBus,
    MessageAppended,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    PersistenceFailed,
    SessionCreated,
    SessionDeleted,
    SessionRenamed,
)

LOGGER = logging.getLogger(__name__)


class ConversationStore:
    """Domain store for conversations.

    Sessions are kept in display order, most recently created first. All
    message mutations are addressed by session id and message id, so
    independent writers never touch each other's messages.

    Events Emitted:
        - SessionCreated / SessionRenamed / SessionDeleted
        - ActiveSessionChanged
        - MessageAppended / MessageUpdated / MessageFinalized / MessageRemoved
        - PersistenceFailed: When the persistence collaborator raises
    """

    def __init__(
        self,
        event_bus: EventBus,
        persistence: ConversationPersistence | None = None,
    ) -> None:
        """Initialize an empty store.

        Args:
            event_bus: The event bus for publishing events.
            persistence: Storage collaborator, or None for memory only.
        """
        self._bus = event_bus
        self._persistence = persistence
        self._sessions: list[ChatSession] = []
        self._active_id: str | None = None
        self._ui_config: dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> ChatSession:
        """Restore persisted state and return the active session.

        Missing or unreadable data yields an empty store, after which one
        fresh session is created.
        """
        snapshot: ConversationSnapshot | None = None
        if self._persistence is not None:
            try:
                snapshot = self._persistence.load()
            except Exception as exc:
                LOGGER.warning("ConversationStore.load: persistence unavailable: %s", exc)
                self._bus.publish(PersistenceFailed(operation="load", error=str(exc)))

        if snapshot is not None:
            self._sessions = list(snapshot.sessions)
            self._ui_config = dict(snapshot.ui_config)
            ids = {session.id for session in self._sessions}
            active = snapshot.active_session_id
            self._active_id = active if active in ids else None
            # A stream cannot survive a restart; freeze whatever it left behind.
            for session in self._sessions:
                for message in session.messages:
                    message.streaming = False
                session.messages = [m for m in session.messages if not m.is_pending]
            reserve_message_ids(message.id for session in self._sessions for message in session.messages)

        LOGGER.debug(
            "ConversationStore.load: %d session(s), active=%s",
            len(self._sessions),
            self._active_id,
        )
        return self.ensure_session()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def active_session_id(self) -> str | None:
        return self._active_id

    @property
    def active_session(self) -> ChatSession | None:
        if self._active_id is None:
            return None
        return self._find_session(self._active_id)

    @property
    def ui_config(self) -> Mapping[str, Any]:
        return dict(self._ui_config)

    def list_sessions(self) -> tuple[ChatSession, ...]:
        """Return sessions most recently created first."""
        return tuple(self._sessions)

    def get_session(self, session_id: str) -> ChatSession:
        session = self._find_session(session_id)
        if session is None:
            raise SessionNotFound(f"Unknown session: {session_id}")
        return session

    def get_message(self, session_id: str, message_id: int) -> ChatMessage:
        message = self.get_session(session_id).find_message(message_id)
        if message is None:
            raise MessageNotFound(f"Unknown message {message_id} in session {session_id}")
        return message

    def streaming_message(self, session_id: str) -> ChatMessage | None:
        return self.get_session(session_id).streaming_message()

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            sessions=list(self._sessions),
            active_session_id=self._active_id,
            ui_config=dict(self._ui_config),
        )

    # ------------------------------------------------------------------
    # Session Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, title: str = DEFAULT_SESSION_TITLE, *, activate: bool = True) -> ChatSession:
        session = ChatSession(id=new_session_id(), title=title or DEFAULT_SESSION_TITLE)
        self._sessions.insert(0, session)
        LOGGER.debug("ConversationStore.create_session: %s", session.id)
        self._bus.publish(SessionCreated(session_id=session.id, title=session.title))
        if activate:
            self._set_active(session.id)
        self._persist("create_session")
        return session

    def ensure_session(self) -> ChatSession:
        """Return the active session, creating one if the store is empty."""
        if not self._sessions:
            return self.create_session()
        active = self.active_session
        if active is None:
            active = self._sessions[0]
            self._set_active(active.id)
            self._persist("ensure_session")
        return active

    def select_session(self, session_id: str) -> ChatSession:
        session = self.get_session(session_id)
        if self._active_id != session_id:
            self._set_active(session_id)
            self._persist("select_session")
        return session

    def rename_session(self, session_id: str, title: str) -> None:
        session = self.get_session(session_id)
        cleaned = (title or "").strip()
        if not cleaned or cleaned == session.title:
            return
        session.title = cleaned
        self._bus.publish(SessionRenamed(session_id=session_id, title=cleaned))
        self._persist("rename_session")

    def delete_session(self, session_id: str) -> str | None:
        """Remove a session and return the new active session id.

        When the deleted session was active the pointer moves to the first
        remaining session in display order, or to None.
        """
        session = self.get_session(session_id)
        self._sessions.remove(session)
        if self._active_id == session_id:
            next_id = self._sessions[0].id if self._sessions else None
            self._set_active(next_id)
        LOGGER.debug(
            "ConversationStore.delete_session: %s, active=%s",
            session_id,
            self._active_id,
        )
        self._bus.publish(SessionDeleted(session_id=session_id, active_session_id=self._active_id))
        self._persist("delete_session")
        return self._active_id

    def update_ui_config(self, values: Mapping[str, Any]) -> None:
        self._ui_config.update(values)
        self._persist("update_ui_config")

    # ------------------------------------------------------------------
    # Message Mutations
    # ------------------------------------------------------------------

    def append_user_message(
        self,
        session_id: str,
        text: str,
        attachment: Attachment | None = None,
    ) -> ChatMessage:
        session = self.get_session(session_id)
        message = ChatMessage(id=next_message_id(), sender="user", text=text, attachment=attachment)
        session.messages.append(message)
        self._bus.publish(MessageAppended(session_id=session_id, message_id=message.id, sender="user"))
        self._persist("append_user_message")
        return message

    def append_assistant_placeholder(self, session_id: str) -> ChatMessage:
        """Append the empty, streaming assistant message a reply grows into.

        Raises:
            StreamInProgress: If the session already has a streaming message.
        """
        session = self.get_session(session_id)
        if session.streaming_message() is not None:
            raise StreamInProgress(f"Session {session_id} already has a streaming message")
        message = ChatMessage(id=next_message_id(), sender="assistant", streaming=True)
        session.messages.append(message)
        self._bus.publish(MessageAppended(session_id=session_id, message_id=message.id, sender="assistant"))
        self._persist("append_assistant_placeholder")
        return message

    def append_to_message(self, session_id: str, message_id: int, delta: str) -> ChatMessage:
        """Append ``delta`` to a streaming message and publish the new view.

        Raises:
            MessageFinalizedError: If the message is no longer streaming.
        """
        message = self.get_message(session_id, message_id)
        if not message.streaming:
            raise MessageFinalizedError(f"Message {message_id} is already finalized")
        message.text += delta
        self._bus.publish(
            MessageUpdated(
                session_id=session_id,
                message_id=message_id,
                text=message.text,
                segments=segment_text(message.text),
            )
        )
        self._persist("append_to_message")
        return message

    def finalize_message(self, session_id: str, message_id: int) -> ChatMessage:
        message = self.get_message(session_id, message_id)
        if not message.streaming:
            return message
        message.streaming = False
        self._bus.publish(MessageFinalized(session_id=session_id, message_id=message_id))
        self._persist("finalize_message")
        return message

    def remove_message(self, session_id: str, message_id: int) -> None:
        session = self.get_session(session_id)
        message = session.find_message(message_id)
        if message is None:
            raise MessageNotFound(f"Unknown message {message_id} in session {session_id}")
        session.messages.remove(message)
        self._bus.publish(MessageRemoved(session_id=session_id, message_id=message_id))
        self._persist("remove_message")

    def append_assistant_message(self, session_id: str, text: str) -> ChatMessage:
        """Append an already-finalized assistant message."""
        session = self.get_session(session_id)
        message = ChatMessage(id=next_message_id(), sender="assistant", text=text)
        session.messages.append(message)
        self._bus.publish(MessageAppended(session_id=session_id, message_id=message.id, sender="assistant"))
        self._persist("append_assistant_message")
        return message

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _find_session(self, session_id: str) -> ChatSession | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def _set_active(self, session_id: str | None) -> None:
        if self._active_id == session_id:
            return
        self._active_id = session_id
        self._bus.publish(ActiveSessionChanged(session_id=session_id))

    def _persist(self, operation: str) -> bool:
        if self._persistence is None:
            return False
        try:
            self._persistence.save(self.snapshot())
            return True
        except Exception as exc:
            LOGGER.warning("ConversationStore.%s: persistence failed: %s", operation, exc)
            self._bus.publish(PersistenceFailed(operation=operation, error=str(exc)))
            return False


__all__ = ["ConversationStore"]
