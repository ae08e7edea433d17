"""Tests for line diff runs."""

from __future__ import annotations

import pytest

from codey.chat.diffing import DiffRun, apply_runs, diff_lines, summarize


PAIRS = [
    ("", ""),
    ("", "new\n"),
    ("old\n", ""),
    ("a\nb\nc\n", "a\nB\nc\nd\n"),
    ("x", "x\ny"),
    ("def f():\n    return 1\n", "def f() -> int:\n    return 1\n"),
    ("same\nsame\n", "same\nsame\n"),
    ("1\n2\n3\n4\n5\n", "0\n1\n3\n5\n6\n"),
]


@pytest.mark.parametrize(("before", "after"), PAIRS)
def test_runs_reconstruct_both_sides(before: str, after: str) -> None:
    runs = diff_lines(before, after)

    assert apply_runs(runs, {"same", "added"}) == after
    assert apply_runs(runs, {"same", "removed"}) == before


@pytest.mark.parametrize(("before", "after"), PAIRS)
def test_no_empty_or_adjacent_duplicate_runs(before: str, after: str) -> None:
    runs = diff_lines(before, after)

    assert all(run.text for run in runs)
    assert all(left.kind != right.kind for left, right in zip(runs, runs[1:]))


def test_replaced_line_is_removed_then_added() -> None:
    runs = diff_lines("a\nb\nc\n", "a\nB\nc\nd\n")

    assert runs == (
        DiffRun("same", "a\n"),
        DiffRun("removed", "b\n"),
        DiffRun("added", "B\n"),
        DiffRun("same", "c\n"),
        DiffRun("added", "d\n"),
    )


def test_identical_text_is_a_single_same_run() -> None:
    assert diff_lines("one\ntwo\n", "one\ntwo\n") == (DiffRun("same", "one\ntwo\n"),)


def test_diff_is_deterministic() -> None:
    before, after = PAIRS[7]

    assert diff_lines(before, after) == diff_lines(before, after)


def test_summary_counts_lines() -> None:
    summary = summarize(diff_lines("a\nb\nc\n", "a\nB\nc\nd\n"))

    assert summary.added_lines == 2
    assert summary.removed_lines == 1
    assert not summary.unchanged
    assert summarize(()).unchanged


def test_run_lines_split_without_endings() -> None:
    assert DiffRun("added", "x\ny\n").lines == ["x", "y"]
