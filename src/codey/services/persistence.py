"""Conversation persistence collaborator and its JSON file implementation."""

from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol

from ..chat.message_model import ChatSession

__all__ = [
    "ConversationPersistence",
    "ConversationSnapshot",
    "JsonConversationStore",
    "DEFAULT_CONVERSATIONS_PATH",
]

LOGGER = logging.getLogger(__name__)
DEFAULT_CONVERSATIONS_PATH = Path.home() / ".codey" / "conversations.json"
_PAYLOAD_VERSION = 1


@dataclass(slots=True)
class ConversationSnapshot:
    """Everything that survives a restart."""

    sessions: List[ChatSession] = field(default_factory=list)
    active_session_id: str | None = None
    ui_config: Dict[str, Any] = field(default_factory=dict)


class ConversationPersistence(Protocol):
    """Key-value storage for the conversation log.

    ``load`` returns ``None`` when nothing was stored yet. Either method may
    raise; callers log the failure and carry on with in-memory state.
    """

    def load(self) -> ConversationSnapshot | None:
        ...

    def save(self, snapshot: ConversationSnapshot) -> None:
        ...


class JsonConversationStore:
    """Persist conversations to a JSON file with atomic writes.

    With ``background=True`` the encoding and the file write happen on a
    single worker thread, so a save issued for every streamed delta does not
    stall the event loop. Writes stay in order and only the newest queued
    snapshot is written. A failed background write is raised from the next
    ``save``, ``flush`` or ``close`` call.
    """

    def __init__(self, path: Path | str | None = None, *, background: bool = False) -> None:
        self._path = Path(path).expanduser() if path is not None else DEFAULT_CONVERSATIONS_PATH
        self._background = background
        self._executor: ThreadPoolExecutor | None = None
        self._lock = threading.Lock()
        self._pending: Dict[str, Any] | None = None
        self._error: Exception | None = None

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> ConversationSnapshot | None:
        payload = self._read_payload()
        if payload is None:
            return None

        sessions: List[ChatSession] = []
        raw_sessions = payload.get("sessions")
        if not isinstance(raw_sessions, list):
            raw_sessions = []
        seen: set[str] = set()
        for entry in raw_sessions:
            if not isinstance(entry, Mapping):
                continue
            try:
                session = ChatSession.from_dict(entry)
            except ValueError as exc:
                LOGGER.warning("Skipping invalid session entry in %s: %s", self._path, exc)
                continue
            if session.id in seen:
                LOGGER.warning("Skipping duplicate session id %s in %s", session.id, self._path)
                continue
            seen.add(session.id)
            sessions.append(session)

        active_id = payload.get("active_session_id")
        ui_config = payload.get("ui_config")
        LOGGER.debug("Loaded %d session(s) from %s, active=%s", len(sessions), self._path, active_id)
        return ConversationSnapshot(
            sessions=sessions,
            active_session_id=active_id if isinstance(active_id, str) else None,
            ui_config=dict(ui_config) if isinstance(ui_config, Mapping) else {},
        )

    def save(self, snapshot: ConversationSnapshot) -> None:
        # Message dicts only reference immutable strings, so the payload is
        # safe to hand to the writer thread.
        payload = {
            "version": _PAYLOAD_VERSION,
            "sessions": [session.to_dict() for session in snapshot.sessions],
            "active_session_id": snapshot.active_session_id,
            "ui_config": dict(snapshot.ui_config),
        }
        if not self._background:
            self._write(payload)
            return
        self._raise_deferred_error()
        with self._lock:
            self._pending = payload
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="codey-persistence")
        self._executor.submit(self._drain)

    def flush(self) -> None:
        """Block until every queued background write has finished."""

        if self._executor is not None:
            self._executor.submit(self._drain).result()
        self._raise_deferred_error()

    def close(self) -> None:
        """Finish queued writes and stop the writer thread."""

        executor, self._executor = self._executor, None
        if executor is not None:
            executor.submit(self._drain)
            executor.shutdown(wait=True)
        self._raise_deferred_error()

    def _drain(self) -> None:
        with self._lock:
            payload, self._pending = self._pending, None
        if payload is None:
            return
        try:
            self._write(payload)
        except Exception as exc:
            LOGGER.warning("Background save to %s failed: %s", self._path, exc)
            with self._lock:
                self._error = exc

    def _raise_deferred_error(self) -> None:
        with self._lock:
            error, self._error = self._error, None
        if error is not None:
            raise error

    def _write(self, payload: Dict[str, Any]) -> None:
        body = json.dumps(payload, indent=2, ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)

    def _read_payload(self) -> Dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as exc:
            LOGGER.warning("Conversation file %s is not valid JSON: %s", self._path, exc)
            return None
        if not isinstance(data, dict):
            LOGGER.warning("Conversation file %s does not hold an object", self._path)
            return None
        return data
