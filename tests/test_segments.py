"""Tests for fenced-code segmentation."""

from __future__ import annotations

import pytest

from codey.chat.segments import (
    CodeSegment,
    ProseSegment,
    code_segments,
    segment_text,
    strip_code_fences,
)


SAMPLES = [
    "",
    "just prose",
    "Intro\n```python\nprint('hi')\n```\nOutro",
    "```js\nconst a = 1;\n```",
    "a\n```\nx\n```\nb\n```sh\nls -la\n```\n",
    "Unfinished\n```python\nprint(",
    "```\n```",
    "Spaced\n```c++\nint x;\n```",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_concatenated_raw_text_reconstructs_input(text: str) -> None:
    assert "".join(segment.raw for segment in segment_text(text)) == text


def test_prose_and_code_split_in_order() -> None:
    segments = segment_text("Intro\n```python\nprint('hi')\n```\nOutro")

    assert segments == (
        ProseSegment("Intro\n"),
        CodeSegment(language="python", code="print('hi')", raw="```python\nprint('hi')\n```"),
        ProseSegment("\nOutro"),
    )


def test_missing_language_defaults_to_plaintext() -> None:
    (segment,) = segment_text("```\nplain\n```")

    assert isinstance(segment, CodeSegment)
    assert segment.language == "plaintext"


def test_hyphenated_language_tag() -> None:
    (segment,) = segment_text("```objective-c\n@end\n```")

    assert isinstance(segment, CodeSegment)
    assert segment.language == "objective-c"


def test_unterminated_fence_stays_prose() -> None:
    text = "Here you go:\n```python\ndef f():\n    return 1"

    segments = segment_text(text)

    assert segments == (ProseSegment(text),)


def test_streaming_prefixes_switch_to_code_once_fence_closes() -> None:
    full = "Look:\n```py\nx = 1\n```"
    partial = full[: len(full) - 3]

    assert all(isinstance(s, ProseSegment) for s in segment_text(partial))
    assert any(isinstance(s, CodeSegment) for s in segment_text(full))


def test_display_code_is_trimmed_but_code_is_not() -> None:
    (segment,) = segment_text("```py\n\n  x = 1  \n\n```")

    assert isinstance(segment, CodeSegment)
    assert segment.code == "\n  x = 1  \n"
    assert segment.display_code == "x = 1"


def test_code_segments_returns_only_code_in_order() -> None:
    blocks = code_segments("a\n```\nfirst\n```\nb\n```sh\nsecond\n```")

    assert [block.code for block in blocks] == ["first", "second"]
    assert [block.language for block in blocks] == ["plaintext", "sh"]


def test_segmenting_is_stable_for_repeated_calls() -> None:
    text = SAMPLES[4]

    assert segment_text(text) == segment_text(text)


class TestStripCodeFences:
    def test_single_block_reply(self) -> None:
        assert strip_code_fences("```python\ndef f():\n    pass\n```") == "def f():\n    pass"

    def test_block_surrounded_by_chatter(self) -> None:
        reply = "Sure! Here it is:\n```js\nlet x = 2;\n```\nEnjoy."

        assert strip_code_fences(reply) == "let x = 2;"

    def test_bare_reply_is_returned_unchanged(self) -> None:
        assert strip_code_fences("x = 1\n") == "x = 1\n"

    def test_empty_reply(self) -> None:
        assert strip_code_fences("") == ""
