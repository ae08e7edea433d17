"""Session layer for the chat client.

This package holds the stateful pieces that sit between the remote model
and a front-end. Each one receives its collaborators through its
constructor and reports state changes on the event bus.

Components:
    - ConversationStore: Sessions and messages, persisted after every change
    - StreamingSessionActor: One exchange with the remote model at a time
    - SessionController: Owns the current actor and the chat mode
    - ActionCoordinator: Refactor and explain flows for single code blocks
    - Autocomplete: Debounced input suggestions
"""

from __future__ import annotations

from .actions import ActionCoordinator, ActionStatus
from .actor import StreamingSessionActor, StreamState, TurnOutcome
from .autocomplete import Autocomplete, SuggestionPolicy
from .controller import SessionController
from .events import EventBus
from .store import ConversationStore

__all__ = [
    "ActionCoordinator",
    "ActionStatus",
    "Autocomplete",
    "ConversationStore",
    "EventBus",
    "SessionController",
    "StreamState",
    "StreamingSessionActor",
    "SuggestionPolicy",
    "TurnOutcome",
]
