"""Split message text into prose and fenced-code segments."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterator, Union

__all__ = [
    "CodeSegment",
    "ProseSegment",
    "Segment",
    "DEFAULT_LANGUAGE",
    "segment_text",
    "code_segments",
    "strip_code_fences",
]

DEFAULT_LANGUAGE = "plaintext"

# A block only counts once both fences are present; the opening fence must be
# followed by a line break and the closing fence preceded by one.
_FENCED_BLOCK = re.compile(r"```(?P<language>[\w-]*)\n(?P<code>[\s\S]*?)\n```")
_OUTER_FENCE = re.compile(r"^\s*```[\w-]*[^\S\n]*\n(?P<code>[\s\S]*?)\n?```\s*$")
_FIRST_FENCE = re.compile(r"```[\w-]*[^\S\n]*\n(?P<code>[\s\S]*?)(?:\n```|$)")


@dataclass(frozen=True, slots=True)
class ProseSegment:
    """Plain text between code blocks (possibly holding an unfinished fence)."""

    text: str

    @property
    def raw(self) -> str:
        return self.text


@dataclass(frozen=True, slots=True)
class CodeSegment:
    """A complete fenced code block.

    Attributes:
        language: Fence language tag, ``"plaintext"`` when omitted.
        code: Text between the fences, untouched.
        raw: The full block including both fences.
    """

    language: str
    code: str
    raw: str

    @property
    def display_code(self) -> str:
        return self.code.strip()


Segment = Union[ProseSegment, CodeSegment]


def _iter_segments(text: str) -> Iterator[Segment]:
    cursor = 0
    for match in _FENCED_BLOCK.finditer(text):
        start, end = match.span()
        if start > cursor:
            yield ProseSegment(text[cursor:start])
        yield CodeSegment(
            language=match.group("language") or DEFAULT_LANGUAGE,
            code=match.group("code"),
            raw=match.group(0),
        )
        cursor = end
    if cursor < len(text):
        yield ProseSegment(text[cursor:])


def segment_text(text: str) -> tuple[Segment, ...]:
    """Return the ordered segments of ``text``.

    Joining ``segment.raw`` for every segment reproduces ``text`` exactly. An
    opening fence without its closing fence stays inside a prose segment so a
    half-streamed block is never shown as code.
    """

    if not text:
        return ()
    return tuple(_iter_segments(text))


def code_segments(text: str) -> tuple[CodeSegment, ...]:
    """Return only the complete code blocks of ``text``, in order."""

    return tuple(segment for segment in _iter_segments(text or "") if isinstance(segment, CodeSegment))


def strip_code_fences(text: str) -> str:
    """Extract the code payload from a model reply.

    Handles a reply that is exactly one fenced block, a reply with a fenced
    block surrounded by chatter, and a bare reply with no fences at all.
    """

    if not text:
        return ""
    whole = _OUTER_FENCE.match(text)
    if whole:
        return whole.group("code")
    first = _FIRST_FENCE.search(text)
    if first:
        return first.group("code")
    return text
