"""Accent palette generation through the structured JSON capability."""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, Field, field_validator

from . import prompts
from .ai_types import GenerationCapability
from .errors import UserInputRejected
from .modes import ModeProfile
from .requests import one_shot_request

__all__ = ["Theme", "generate_theme", "THEME_ERROR_MESSAGE"]

LOGGER = logging.getLogger(__name__)
THEME_ERROR_MESSAGE = "Failed to generate theme. Please try a different prompt."
_HSL_TRIPLE = re.compile(r"^\d{1,3}(?:\.\d+)?\s+\d{1,3}(?:\.\d+)?%\s+\d{1,3}(?:\.\d+)?%$")


class Theme(BaseModel):
    """Named accent palette; each shade is an ``"H S% L%"`` triple."""

    name: str = Field(min_length=1, max_length=40)
    c400: str
    c500: str
    c600: str

    @field_validator("c400", "c500", "c600")
    @classmethod
    def _check_hsl(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not _HSL_TRIPLE.match(cleaned):
            raise ValueError(f"not an HSL triple: {value!r}")
        return cleaned


async def generate_theme(capability: GenerationCapability, profile: ModeProfile, description: str) -> Theme:
    """Ask the model for an accent palette matching ``description``.

    Raises:
        UserInputRejected: If ``description`` is blank.
        TransportFailure: If the request fails.
        MalformedResponse: If the reply does not validate as a :class:`Theme`.
    """
    if not description.strip():
        raise UserInputRejected("Theme description is empty")
    request = one_shot_request(
        model=profile.model,
        system_prompt=prompts.THEME_INSTRUCTION,
        prompt=prompts.theme_prompt(description),
    )
    theme = await capability.complete_json(request, Theme)
    LOGGER.debug("Generated theme %r", theme.name)
    return theme
