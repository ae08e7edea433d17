"""Line-based diff runs for the refactor view."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from typing import Collection, Iterable, Literal, Sequence

__all__ = [
    "DiffRun",
    "DiffSummary",
    "RunKind",
    "apply_runs",
    "diff_lines",
    "summarize",
]

RunKind = Literal["same", "added", "removed"]


@dataclass(frozen=True, slots=True)
class DiffRun:
    """A maximal span of lines sharing one classification."""

    kind: RunKind
    text: str

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


@dataclass(frozen=True, slots=True)
class DiffSummary:
    """Line counts describing a diff."""

    added_lines: int
    removed_lines: int

    @property
    def unchanged(self) -> bool:
        return self.added_lines == 0 and self.removed_lines == 0


def diff_lines(before: str, after: str) -> tuple[DiffRun, ...]:
    """Return the ordered runs transforming ``before`` into ``after``.

    Lines keep their endings, so concatenating the ``same`` and ``added`` runs
    yields ``after`` and concatenating ``same`` and ``removed`` yields
    ``before``. Within a replaced region the removed run precedes the added run.
    """

    if before is None or after is None:
        raise ValueError("Both before and after text must be provided")

    before_lines = before.splitlines(keepends=True)
    after_lines = after.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(a=before_lines, b=after_lines, autojunk=False)

    runs: list[DiffRun] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            _append(runs, "same", before_lines[i1:i2])
            continue
        if tag in ("replace", "delete"):
            _append(runs, "removed", before_lines[i1:i2])
        if tag in ("replace", "insert"):
            _append(runs, "added", after_lines[j1:j2])
    return tuple(runs)


def _append(runs: list[DiffRun], kind: RunKind, lines: Sequence[str]) -> None:
    text = "".join(lines)
    if not text:
        return
    if runs and runs[-1].kind == kind:
        runs[-1] = DiffRun(kind=kind, text=runs[-1].text + text)
        return
    runs.append(DiffRun(kind=kind, text=text))


def apply_runs(runs: Iterable[DiffRun], keep: Collection[RunKind]) -> str:
    """Concatenate the text of every run whose kind is in ``keep``."""

    return "".join(run.text for run in runs if run.kind in keep)


def summarize(runs: Iterable[DiffRun]) -> DiffSummary:
    added = 0
    removed = 0
    for run in runs:
        if run.kind == "added":
            added += len(run.lines)
        elif run.kind == "removed":
            removed += len(run.lines)
    return DiffSummary(added_lines=added, removed_lines=removed)
