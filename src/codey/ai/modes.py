"""Chat modes and the model profile each one selects."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from . import prompts

__all__ = ["ChatMode", "ModeProfile", "DEFAULT_MODE_MODELS", "resolve_profile"]


class ChatMode(Enum):
    """User-selectable answer styles.

    Values:
        VIBE: Balanced default model.
        HYPER: Smallest, fastest model.
        REASONING: Largest model with a high thinking-effort hint.
    """

    VIBE = "vibe"
    HYPER = "hyper"
    REASONING = "reasoning"

    @classmethod
    def parse(cls, value: "ChatMode | str | None") -> "ChatMode":
        if isinstance(value, ChatMode):
            return value
        normalized = (value or "").strip().lower()
        if normalized == "deepthought":
            return cls.REASONING
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown chat mode: {value!r}")


DEFAULT_MODE_MODELS: Mapping[str, str] = {
    ChatMode.VIBE.value: "gpt-4o-mini",
    ChatMode.HYPER.value: "gpt-4.1-nano",
    ChatMode.REASONING.value: "o4-mini",
}
_THINKING_EFFORT: Mapping[ChatMode, str] = {ChatMode.REASONING: "high"}


@dataclass(frozen=True, slots=True)
class ModeProfile:
    mode: ChatMode
    model: str
    system_prompt: str
    thinking_effort: str | None = None


def resolve_profile(mode: ChatMode | str, models: Mapping[str, str] | None = None) -> ModeProfile:
    """Return the model profile for ``mode``, honoring configured overrides."""

    resolved = ChatMode.parse(mode)
    table = dict(DEFAULT_MODE_MODELS)
    if models:
        table.update({key: value for key, value in models.items() if value})
    return ModeProfile(
        mode=resolved,
        model=table[resolved.value],
        system_prompt=prompts.SYSTEM_INSTRUCTION,
        thinking_effort=_THINKING_EFFORT.get(resolved),
    )
