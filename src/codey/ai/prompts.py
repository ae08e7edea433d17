"""Prompt templates for the chat stream and the code actions."""

from __future__ import annotations

SYSTEM_INSTRUCTION = """\
You are "Codey", a friendly, chill coding buddy that helps users write, debug, and explore code creatively.
Your vibe:
- Speak casually but with clarity.
- Mix in humor and positivity.
- Explain code like a senior dev mentoring a friend.
- Always keep the tone supportive and confident.
- Always format code snippets using markdown with the correct language identifier.
"""

REFACTOR_INSTRUCTION = """\
You are an expert software engineer. Refactor the code you are given for readability, \
correctness and idiomatic style while keeping its behavior.
Return ONLY the refactored code inside a single markdown code block. \
Do not add explanations before or after the block."""

EXPLAIN_INSTRUCTION = """\
You are a patient senior developer. Explain what the given code does, step by step, \
in concise markdown. Point out anything surprising or risky."""

THEME_INSTRUCTION = """\
You design accent color palettes for a dark chat interface. Reply with JSON only, \
containing the keys "name", "c400", "c500" and "c600". Each color value is an HSL \
triple written as "H S% L%"."""


def refactor_prompt(code: str) -> str:
    return f"Refactor the following code:\n\n```\n{code}\n```"


def explain_prompt(code: str, language: str) -> str:
    """Build the user turn for an explanation request.

    The language tag is repeated in the fence so the model reads the code
    with the right syntax in mind.
    """

    tag = language if language and language != "plaintext" else ""
    return f"Explain this {language or 'code'} snippet:\n\n```{tag}\n{code}\n```"


def theme_prompt(description: str) -> str:
    return f"Create an accent palette for this description: {description.strip()}"


def completion_prompt(partial: str) -> str:
    """Prompt asking the model to continue a half-typed chat message."""

    return (
        "Continue the user's unfinished message to a coding assistant. Reply with only the "
        "missing continuation, no quotes, at most one sentence.\n\n"
        f"Unfinished message: {partial}"
    )


__all__ = [
    "SYSTEM_INSTRUCTION",
    "REFACTOR_INSTRUCTION",
    "EXPLAIN_INSTRUCTION",
    "THEME_INSTRUCTION",
    "refactor_prompt",
    "explain_prompt",
    "theme_prompt",
    "completion_prompt",
]
