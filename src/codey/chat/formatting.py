"""Prose formatting and message rendering helpers."""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token

from .message_model import Attachment, ChatMessage, Sender
from .segments import CodeSegment, segment_text

__all__ = [
    "RenderedBlock",
    "RenderedMessage",
    "PENDING_INDICATOR_HTML",
    "MAX_HEADING_LEVEL",
    "format_prose",
    "render_code",
    "render_message",
    "render_text",
]

MAX_HEADING_LEVEL = 4
PENDING_INDICATOR_HTML = (
    '<div class="codey-pending" aria-label="Waiting for response">'
    '<span class="dot"></span><span class="dot"></span><span class="dot"></span>'
    "</div>"
)
# Block rules run before inline rules, so list markers are claimed as whole
# blocks before emphasis can see them.
_ENABLED_RULES: Sequence[str] = ("hr", "heading", "list", "newline", "backticks", "emphasis")

BlockKind = Literal["pending", "prose", "code"]

_MARKDOWN_RENDERER: Optional[MarkdownIt] = None


@dataclass(frozen=True, slots=True)
class RenderedBlock:
    """One visual block of a rendered message."""

    kind: BlockKind
    html: str
    language: str | None = None
    code: str | None = None
    code_index: int | None = None


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    """Derived view of a message; rebuilt from ``ChatMessage.text`` every time."""

    message_id: int
    sender: Sender
    blocks: tuple[RenderedBlock, ...]
    attachment: Attachment | None = None
    streaming: bool = False

    @property
    def code_blocks(self) -> tuple[RenderedBlock, ...]:
        return tuple(block for block in self.blocks if block.kind == "code")


def _build_renderer() -> MarkdownIt:
    global _MARKDOWN_RENDERER
    if _MARKDOWN_RENDERER is None:
        renderer = MarkdownIt("zero", {"breaks": True, "html": False})
        renderer.enable(list(_ENABLED_RULES))
        _MARKDOWN_RENDERER = renderer
    return _MARKDOWN_RENDERER


def _demote_deep_headings(tokens: list[Token]) -> None:
    """Render headings deeper than ``MAX_HEADING_LEVEL`` as literal paragraphs."""

    for index, token in enumerate(tokens):
        if token.type != "heading_open" or len(token.markup) <= MAX_HEADING_LEVEL:
            continue
        markup = token.markup
        token.tag = "p"
        inline = tokens[index + 1] if index + 1 < len(tokens) else None
        if inline is not None and inline.type == "inline":
            prefix = Token("text", "", 0, content=f"{markup} ")
            inline.children = [prefix, *(inline.children or [])]
        for closing in tokens[index + 1 :]:
            if closing.type == "heading_close":
                closing.tag = "p"
                break


def format_prose(text: str) -> str:
    """Convert one prose segment into safe HTML.

    Recognizes horizontal rules, headings up to level four, ordered and
    unordered lists, then bold, italic and inline code. Raw HTML is escaped.
    Unbalanced markup is left as literal text.
    """

    if not text or not text.strip():
        return ""
    renderer = _build_renderer()
    env: dict = {}
    tokens = renderer.parse(text, env)
    _demote_deep_headings(tokens)
    return renderer.renderer.render(tokens, renderer.options, env)


def render_code(segment: CodeSegment) -> str:
    language = html.escape(segment.language, quote=True)
    body = html.escape(segment.display_code)
    return f'<pre><code class="language-{language}">{body}</code></pre>'


def render_text(text: str) -> str:
    """Render free-form model output (prose plus fenced code) to one HTML string."""

    parts: list[str] = []
    for segment in segment_text(text):
        if isinstance(segment, CodeSegment):
            parts.append(render_code(segment))
        else:
            parts.append(format_prose(segment.text))
    return "".join(parts)


def render_message(message: ChatMessage) -> RenderedMessage:
    """Derive the rendered view of ``message``.

    An assistant message without text yields a single pending indicator,
    which is how a stream that has not produced its first delta is shown.
    """

    if message.is_pending:
        blocks: tuple[RenderedBlock, ...] = (RenderedBlock(kind="pending", html=PENDING_INDICATOR_HTML),)
    else:
        rendered: list[RenderedBlock] = []
        code_index = 0
        for segment in segment_text(message.text):
            if isinstance(segment, CodeSegment):
                rendered.append(
                    RenderedBlock(
                        kind="code",
                        html=render_code(segment),
                        language=segment.language,
                        code=segment.display_code,
                        code_index=code_index,
                    )
                )
                code_index += 1
                continue
            markup = format_prose(segment.text)
            if markup:
                rendered.append(RenderedBlock(kind="prose", html=markup))
        blocks = tuple(rendered)
    return RenderedMessage(
        message_id=message.id,
        sender=message.sender,
        blocks=blocks,
        attachment=message.attachment,
        streaming=message.streaming,
    )
