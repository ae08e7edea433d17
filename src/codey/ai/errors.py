"""Error types shared by the AI client and the session layer."""

from __future__ import annotations

__all__ = [
    "CodeyError",
    "TransportFailure",
    "MalformedResponse",
    "UserInputRejected",
    "StreamInProgress",
    "SessionNotFound",
    "MessageNotFound",
    "MessageFinalizedError",
]


class CodeyError(Exception):
    """Base class for all errors raised by the package.

    Attributes:
        user_message: Short text that is safe to show in the conversation.
    """

    user_message: str = "Something went wrong."

    def __init__(self, message: str = "", *, user_message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class TransportFailure(CodeyError):
    """Network or provider failure during a stream or one-shot call."""

    user_message = "Sorry, I encountered an error. Please try again."


class MalformedResponse(CodeyError):
    """Provider returned a payload that failed schema validation."""

    user_message = "The model returned an unexpected response."


class UserInputRejected(CodeyError):
    """Submit had neither text nor an attachment; nothing is sent."""

    user_message = "Type a message or attach a file first."


class StreamInProgress(CodeyError):
    """A second submit arrived while an assistant message is still streaming."""

    user_message = "Wait for the current response to finish."


class SessionNotFound(CodeyError, KeyError):
    """Session id is not present in the conversation store."""


class MessageNotFound(CodeyError, KeyError):
    """Message id is not present in the addressed session."""


class MessageFinalizedError(CodeyError):
    """Attempted to mutate a message whose stream already completed."""
