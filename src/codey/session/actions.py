"""Per-code-block refactor and explain flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from ..ai import prompts
from ..ai.ai_types import GenerationCapability
from ..ai.modes import ModeProfile
from ..ai.requests import one_shot_request
from ..chat.diffing import DiffRun, DiffSummary, diff_lines, summarize
from ..chat.formatting import render_text
from ..chat.segments import strip_code_fences
from .events import CodeActionChanged, EventBus

LOGGER = logging.getLogger(__name__)

BlockKey = tuple[int, int]

REFACTOR_ERROR_PREFIX = "// Error refactoring code: "
EXPLAIN_ERROR_PREFIX = "Error explaining code: "


class ActionKind(Enum):
    REFACTOR = "refactor"
    EXPLAIN = "explain"


class ActionStatus(Enum):
    """State of one action on one code block."""

    IDLE = "idle"
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True)
class RefactorState:
    """Refactor flow for a single code block.

    Attributes:
        status: Where the flow currently is.
        original: The code the refactor was requested for.
        suggestion: Refactored code with fences stripped.
        runs: Line diff between ``original`` and ``suggestion``; empty when
            the suggestion is identical to the input.
        error: Inline error line shown in place of the diff.
    """

    status: ActionStatus = ActionStatus.IDLE
    original: str = ""
    suggestion: str | None = None
    runs: tuple[DiffRun, ...] = ()
    error: str | None = None

    @property
    def unchanged(self) -> bool:
        return self.status is ActionStatus.DONE and not self.runs

    @property
    def summary(self) -> DiffSummary:
        return summarize(self.runs)


@dataclass(slots=True)
class ExplainState:
    status: ActionStatus = ActionStatus.IDLE
    text: str = ""
    html: str = ""
    expanded: bool = False
    error: str | None = None


@dataclass(slots=True)
class CodeBlockActions:
    refactor: RefactorState = field(default_factory=RefactorState)
    explain: ExplainState = field(default_factory=ExplainState)


class ActionCoordinator:
    """Runs one-shot refactor/explain requests for individual code blocks.

    Each block is addressed by ``(message_id, code_index)`` and owns its own
    state, so actions on different blocks (and the main chat stream) never
    interfere. Failures are turned into an inline error on the block that
    requested them and are never raised.

    Events Emitted:
        - CodeActionChanged: Whenever a block's refactor or explain status changes
    """

    def __init__(
        self,
        capability: GenerationCapability,
        event_bus: EventBus,
        *,
        profile_provider: Callable[[], ModeProfile],
    ) -> None:
        """Initialize the coordinator.

        Args:
            capability: Remote generation capability used for one-shot requests.
            event_bus: The event bus for publishing events.
            profile_provider: Returns the profile of the current chat mode.
        """
        self._capability = capability
        self._bus = event_bus
        self._profile_provider = profile_provider
        self._blocks: dict[BlockKey, CodeBlockActions] = {}
        self._refactor_tokens: dict[BlockKey, int] = {}
        self._explain_tokens: dict[BlockKey, int] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, message_id: int, code_index: int) -> CodeBlockActions:
        return self._blocks.setdefault((message_id, code_index), CodeBlockActions())

    def forget_message(self, message_id: int) -> None:
        """Drop all action state for a removed message."""
        for key in [key for key in self._blocks if key[0] == message_id]:
            self._blocks.pop(key, None)
            self._refactor_tokens.pop(key, None)
            self._explain_tokens.pop(key, None)

    # ------------------------------------------------------------------
    # Refactor
    # ------------------------------------------------------------------

    async def refactor(self, message_id: int, code_index: int, code: str) -> RefactorState:
        """Request a refactored version of ``code`` and diff it against the input.

        A newer refactor on the same block supersedes an older one; the older
        reply is discarded when it arrives.
        """
        key = (message_id, code_index)
        token = self._refactor_tokens.get(key, 0) + 1
        self._refactor_tokens[key] = token
        block = self.get(message_id, code_index)
        block.refactor = RefactorState(status=ActionStatus.PENDING, original=code)
        self._publish(key, ActionKind.REFACTOR, ActionStatus.PENDING)

        profile = self._profile_provider()
        request = one_shot_request(
            model=profile.model,
            system_prompt=prompts.REFACTOR_INSTRUCTION,
            prompt=prompts.refactor_prompt(code),
            thinking_effort=profile.thinking_effort,
        )
        try:
            reply = await self._capability.complete_text(request)
        except Exception as exc:
            if self._refactor_tokens.get(key) != token:
                return self._blocks.get(key, block).refactor
            LOGGER.warning("ActionCoordinator.refactor failed for block %s: %s", key, exc)
            state = RefactorState(status=ActionStatus.FAILED, original=code, error=f"{REFACTOR_ERROR_PREFIX}{exc}")
            block.refactor = state
            self._publish(key, ActionKind.REFACTOR, ActionStatus.FAILED)
            return state

        if self._refactor_tokens.get(key) != token:
            LOGGER.debug("ActionCoordinator.refactor: discarding superseded reply for block %s", key)
            return self._blocks.get(key, block).refactor

        suggestion = strip_code_fences(reply)
        if suggestion.strip() == code.strip():
            runs: tuple[DiffRun, ...] = ()
        else:
            runs = diff_lines(code, suggestion)
        state = RefactorState(status=ActionStatus.DONE, original=code, suggestion=suggestion, runs=runs)
        block.refactor = state
        summary = state.summary
        LOGGER.debug(
            "ActionCoordinator.refactor: block=%s, +%d/-%d lines",
            key,
            summary.added_lines,
            summary.removed_lines,
        )
        self._publish(key, ActionKind.REFACTOR, ActionStatus.DONE)
        return state

    def dismiss_refactor(self, message_id: int, code_index: int) -> None:
        """Return the block to its plain code view, discarding any pending reply."""
        key = (message_id, code_index)
        self._refactor_tokens[key] = self._refactor_tokens.get(key, 0) + 1
        self.get(message_id, code_index).refactor = RefactorState()
        self._publish(key, ActionKind.REFACTOR, ActionStatus.IDLE)

    # ------------------------------------------------------------------
    # Explain
    # ------------------------------------------------------------------

    async def explain(self, message_id: int, code_index: int, code: str, language: str) -> ExplainState:
        """Request an explanation of ``code`` and render it for the block's panel."""
        key = (message_id, code_index)
        token = self._explain_tokens.get(key, 0) + 1
        self._explain_tokens[key] = token
        block = self.get(message_id, code_index)
        block.explain = ExplainState(status=ActionStatus.PENDING, expanded=True)
        self._publish(key, ActionKind.EXPLAIN, ActionStatus.PENDING)

        profile = self._profile_provider()
        request = one_shot_request(
            model=profile.model,
            system_prompt=prompts.EXPLAIN_INSTRUCTION,
            prompt=prompts.explain_prompt(code, language),
            thinking_effort=profile.thinking_effort,
        )
        try:
            reply = await self._capability.complete_text(request)
        except Exception as exc:
            if self._explain_tokens.get(key) != token:
                return self._blocks.get(key, block).explain
            LOGGER.warning("ActionCoordinator.explain failed for block %s: %s", key, exc)
            state = ExplainState(status=ActionStatus.FAILED, expanded=True, error=f"{EXPLAIN_ERROR_PREFIX}{exc}")
            block.explain = state
            self._publish(key, ActionKind.EXPLAIN, ActionStatus.FAILED)
            return state

        if self._explain_tokens.get(key) != token:
            return self._blocks.get(key, block).explain

        state = ExplainState(status=ActionStatus.DONE, text=reply, html=render_text(reply), expanded=True)
        block.explain = state
        self._publish(key, ActionKind.EXPLAIN, ActionStatus.DONE)
        return state

    def toggle_explanation(self, message_id: int, code_index: int) -> bool:
        """Collapse or expand a finished explanation; returns the new state."""
        state = self.get(message_id, code_index).explain
        if state.status is ActionStatus.IDLE:
            return False
        state.expanded = not state.expanded
        return state.expanded

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _publish(self, key: BlockKey, action: ActionKind, status: ActionStatus) -> None:
        self._bus.publish(
            CodeActionChanged(
                message_id=key[0],
                code_index=key[1],
                action=action.value,
                status=status.value,
            )
        )


__all__ = [
    "ActionCoordinator",
    "ActionKind",
    "ActionStatus",
    "CodeBlockActions",
    "ExplainState",
    "RefactorState",
]
