"""Event bus infrastructure for decoupled session/view communication.

The store, the streaming actor, and the action coordinator publish events
here; front-ends subscribe and re-render without the core holding any
reference to them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from ..chat.segments import Segment

logger = logging.getLogger(__name__)

# Type variable for event types
E = TypeVar("E", bound="Event")

# Handler type: a callable that takes an event and returns None
Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system.

    Example::

        @dataclass(slots=True)
        class SessionCreated(Event):
            session_id: str
    """

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Session Events
# =============================================================================


@dataclass(slots=True)
class SessionCreated(Event):
    """Emitted when a new conversation is added to the store."""

    session_id: str
    title: str


@dataclass(slots=True)
class SessionRenamed(Event):
    session_id: str
    title: str


@dataclass(slots=True)
class SessionDeleted(Event):
    """Emitted after a session is removed.

    Attributes:
        session_id: The removed session.
        active_session_id: Where the active pointer now points, if anywhere.
    """

    session_id: str
    active_session_id: str | None


@dataclass(slots=True)
class ActiveSessionChanged(Event):
    session_id: str | None


@dataclass(slots=True)
class ChatModeChanged(Event):
    mode: str


# =============================================================================
# Message Events
# =============================================================================


@dataclass(slots=True)
class MessageAppended(Event):
    session_id: str
    message_id: int
    sender: str


@dataclass(slots=True)
class MessageUpdated(Event):
    """Emitted for every delta applied to a streaming message.

    Attributes:
        session_id: Session owning the message.
        message_id: The message that grew.
        text: Full message text after the delta.
        segments: Segments re-derived from ``text``.
    """

    session_id: str
    message_id: int
    text: str
    segments: tuple["Segment", ...] = ()


_QUIET_EVENT_TYPES.add(MessageUpdated)


@dataclass(slots=True)
class MessageFinalized(Event):
    session_id: str
    message_id: int


@dataclass(slots=True)
class MessageRemoved(Event):
    session_id: str
    message_id: int


# =============================================================================
# Streaming Events
# =============================================================================


@dataclass(slots=True)
class StreamStarted(Event):
    """Emitted when the first delta of a reply arrives."""

    session_id: str
    message_id: int


@dataclass(slots=True)
class StreamCompleted(Event):
    session_id: str
    message_id: int
    text: str


@dataclass(slots=True)
class StreamFailed(Event):
    """Emitted when a stream ends in a transport failure.

    Attributes:
        session_id: Session the stream belonged to.
        message_id: The error message that replaced the partial reply.
        error: Internal error description (for logs, not display).
    """

    session_id: str
    message_id: int
    error: str


# =============================================================================
# Code Action Events
# =============================================================================


@dataclass(slots=True)
class CodeActionChanged(Event):
    """Emitted when a refactor or explain flow on a code block changes state."""

    message_id: int
    code_index: int
    action: str
    status: str


@dataclass(slots=True)
class SuggestionReady(Event):
    generation: int
    suggestion: str


@dataclass(slots=True)
class PersistenceFailed(Event):
    operation: str
    error: str


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus for decoupled communication.

    Handlers are stored as weak references where possible to prevent
    memory leaks.

    Example::

        bus = EventBus()
        bus.subscribe(SessionCreated, on_session_created)
        bus.publish(SessionCreated(session_id="s1", title="New Chat"))
        bus.unsubscribe(SessionCreated, on_session_created)

    Thread Safety:
        This implementation is NOT thread-safe. All operations should be
        performed from the thread running the asyncio event loop.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of the specified type.

        Args:
            event_type: The class of events to subscribe to.
            handler: A callable that will be invoked with the event.

        Note:
            Subscribing the same handler multiple times will result in
            multiple invocations when an event is published.
        """
        handler_ref = _HandlerRef.create(handler)
        self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove a previously registered handler.

        Only the first occurrence is removed. Safe to call for handlers that
        were never subscribed.
        """
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return

        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Broadcast an event to all registered handlers.

        Handlers are invoked synchronously in the order they were
        registered. If a handler raises an exception, it is logged
        and remaining handlers continue to be invoked.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if handlers is None:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead_indices: list[int] = []

        # Iterate over a copy so handlers may subscribe/unsubscribe safely.
        for i, handler_ref in enumerate(list(handlers)):
            handler = handler_ref.resolve()
            if handler is None:
                dead_indices.append(i)
                continue

            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for i in reversed(dead_indices):
            if i < len(handlers) and handlers[i].resolve() is None:
                handlers.pop(i)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of registered handlers.

        Args:
            event_type: If provided, return count for that event type only.
                       If None, return total count across all event types.
        """
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Wrapper for handler references supporting both weak and strong refs.

    Bound methods are held through ``WeakMethod`` so subscribers can be
    garbage collected; plain functions and lambdas are held strongly.
    """

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                # Some callables can't be weakly referenced
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Any) -> str:
    """Get a human-readable name for a handler for logging purposes."""
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    # Core infrastructure
    "Event",
    "EventBus",
    "Handler",
    # Session events
    "SessionCreated",
    "SessionRenamed",
    "SessionDeleted",
    "ActiveSessionChanged",
    "ChatModeChanged",
    # Message events
    "MessageAppended",
    "MessageUpdated",
    "MessageFinalized",
    "MessageRemoved",
    # Streaming events
    "StreamStarted",
    "StreamCompleted",
    "StreamFailed",
    # Code action and suggestion events
    "CodeActionChanged",
    "SuggestionReady",
    "PersistenceFailed",
]
