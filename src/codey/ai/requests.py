"""Provider-agnostic request format for the remote generation capability."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterable, Literal, Optional, Union

from ..chat.message_model import Attachment, ChatMessage

__all__ = [
    "GenerationRequest",
    "InlineBinaryPart",
    "Part",
    "TextPart",
    "Turn",
    "TurnRole",
    "history_from_messages",
    "message_parts",
    "one_shot_request",
    "turn_from_message",
]

TurnRole = Literal["user", "model"]


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str


@dataclass(frozen=True, slots=True)
class InlineBinaryPart:
    """Base64 payload sent alongside text (images, documents)."""

    mime_type: str
    data: str
    name: str | None = None


Part = Union[TextPart, InlineBinaryPart]


@dataclass(frozen=True, slots=True)
class Turn:
    role: TurnRole
    parts: tuple[Part, ...]

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))


@dataclass(frozen=True, slots=True)
class GenerationRequest:
    """Everything the remote capability needs to produce a reply.

    Attributes:
        model: Model identifier selected by the chat mode.
        system_prompt: Instruction placed ahead of the history.
        history: Ordered role-tagged turns, oldest first.
        thinking_effort: Optional reasoning-effort hint (``low``/``medium``/``high``).
        temperature: Optional sampling temperature.
    """

    model: str
    system_prompt: str
    history: tuple[Turn, ...] = ()
    thinking_effort: Optional[str] = None
    temperature: Optional[float] = None

    def with_turn(self, turn: Turn) -> "GenerationRequest":
        return replace(self, history=(*self.history, turn))


def message_parts(text: str, attachment: Attachment | None = None) -> tuple[Part, ...]:
    """Return the parts for one user turn; the binary part precedes the text."""

    parts: list[Part] = []
    if attachment is not None:
        payload = attachment.payload
        if attachment.mime_type and payload:
            parts.append(InlineBinaryPart(mime_type=attachment.mime_type, data=payload, name=attachment.name))
    if text:
        parts.append(TextPart(text))
    return tuple(parts)


def turn_from_message(message: ChatMessage) -> Turn:
    if message.is_user:
        return Turn(role="user", parts=message_parts(message.text, message.attachment))
    return Turn(role="model", parts=message_parts(message.text))


def history_from_messages(messages: Iterable[ChatMessage]) -> tuple[Turn, ...]:
    return tuple(turn_from_message(message) for message in messages)


def one_shot_request(
    *,
    model: str,
    system_prompt: str,
    prompt: str,
    thinking_effort: str | None = None,
    temperature: float | None = None,
) -> GenerationRequest:
    """Build a single-turn request independent of any conversation history."""

    return GenerationRequest(
        model=model,
        system_prompt=system_prompt,
        history=(Turn(role="user", parts=(TextPart(prompt),)),),
        thinking_effort=thinking_effort,
        temperature=temperature,
    )
