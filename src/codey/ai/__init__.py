"""AI client, request format, and chat modes."""

from .client import AIClient, ClientSettings
from .errors import MalformedResponse, TransportFailure
from .modes import ChatMode, ModeProfile, resolve_profile
from .requests import GenerationRequest, InlineBinaryPart, TextPart, Turn

__all__ = [
    "AIClient",
    "ClientSettings",
    "ChatMode",
    "ModeProfile",
    "resolve_profile",
    "GenerationRequest",
    "InlineBinaryPart",
    "TextPart",
    "Turn",
    "MalformedResponse",
    "TransportFailure",
]
