"""Conversation session, message, and attachment data models."""

from __future__ import annotations

import base64
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional

__all__ = [
    "Attachment",
    "ChatMessage",
    "ChatSession",
    "Sender",
    "DEFAULT_SESSION_TITLE",
    "next_message_id",
    "new_session_id",
    "reserve_message_ids",
]

Sender = Literal["user", "assistant"]
LOGGER = logging.getLogger(__name__)
DEFAULT_SESSION_TITLE = "New Chat"

_LAST_MESSAGE_ID = 0


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def next_message_id() -> int:
    """Return a process-unique, strictly increasing message id.

    Ids are millisecond timestamps bumped forward when two messages are
    created within the same millisecond, so ids stay ordered across restarts.
    """

    global _LAST_MESSAGE_ID
    candidate = int(time.time() * 1000)
    if candidate <= _LAST_MESSAGE_ID:
        candidate = _LAST_MESSAGE_ID + 1
    _LAST_MESSAGE_ID = candidate
    return candidate


def reserve_message_ids(ids: Iterable[int]) -> None:
    """Make every later id from :func:`next_message_id` exceed all of ``ids``."""

    global _LAST_MESSAGE_ID
    _LAST_MESSAGE_ID = max(_LAST_MESSAGE_ID, *ids, 0)


def new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class Attachment:
    """File attached to a user message.

    ``content`` is a data-URL style string (``data:<mime>;base64,<payload>``).
    """

    name: str
    mime_type: str
    content: str

    @classmethod
    def from_bytes(cls, name: str, mime_type: str, data: bytes) -> "Attachment":
        encoded = base64.b64encode(data).decode("ascii")
        return cls(name=name, mime_type=mime_type, content=f"data:{mime_type};base64,{encoded}")

    @property
    def payload(self) -> str:
        """Return the encoded payload after the first comma, or ``""``."""

        _, sep, data = self.content.partition(",")
        return data if sep else ""

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.mime_type, "content": self.content}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Attachment":
        return cls(
            name=str(payload.get("name") or ""),
            mime_type=str(payload.get("type") or payload.get("mime_type") or ""),
            content=str(payload.get("content") or ""),
        )


@dataclass(slots=True)
class ChatMessage:
    """Represents one message in a conversation."""

    id: int
    sender: Sender
    text: str = ""
    attachment: Optional[Attachment] = None
    streaming: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_user(self) -> bool:
        return self.sender == "user"

    @property
    def is_pending(self) -> bool:
        """True for an assistant message that has not received any text yet."""

        return self.sender == "assistant" and not self.text

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        payload: Dict[str, Any] = {
            "id": self.id,
            "sender": self.sender,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }
        if self.attachment is not None:
            payload["file"] = self.attachment.to_dict()
        if self.streaming:
            payload["streaming"] = True
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatMessage":
        sender = payload.get("sender")
        if sender == "ai":
            sender = "assistant"
        if sender not in ("user", "assistant"):
            raise ValueError(f"Unknown message sender: {sender!r}")
        message_id = payload.get("id")
        if isinstance(message_id, bool) or not isinstance(message_id, int):
            raise ValueError(f"Invalid message id: {message_id!r}")
        text = payload.get("text", "")
        if not isinstance(text, str):
            raise ValueError("Message text must be a string")
        file_payload = payload.get("file")
        attachment = Attachment.from_dict(file_payload) if isinstance(file_payload, Mapping) else None
        created_at = _parse_timestamp(payload.get("created_at"))
        return cls(
            id=message_id,
            sender=sender,
            text=text,
            attachment=attachment,
            streaming=bool(payload.get("streaming", False)),
            created_at=created_at,
        )


@dataclass(slots=True)
class ChatSession:
    """An ordered conversation with a title."""

    id: str
    title: str = DEFAULT_SESSION_TITLE
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)

    def find_message(self, message_id: int) -> ChatMessage | None:
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def streaming_message(self) -> ChatMessage | None:
        for message in self.messages:
            if message.streaming:
                return message
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "messages": [message.to_dict() for message in self.messages],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ChatSession":
        session_id = payload.get("id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError(f"Invalid session id: {session_id!r}")
        title = payload.get("title")
        raw_messages = payload.get("messages") or []
        if not isinstance(raw_messages, list):
            raise ValueError("Session messages must be a list")
        messages: List[ChatMessage] = []
        for item in raw_messages:
            if not isinstance(item, Mapping):
                continue
            try:
                messages.append(ChatMessage.from_dict(item))
            except ValueError as exc:
                LOGGER.warning("Skipping invalid message in session %s: %s", session_id, exc)
        return cls(
            id=session_id,
            title=title if isinstance(title, str) and title else DEFAULT_SESSION_TITLE,
            messages=messages,
            created_at=_parse_timestamp(payload.get("created_at")),
        )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return _utcnow()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return _utcnow()
