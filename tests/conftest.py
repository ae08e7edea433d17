"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from codey.session.events import EventBus
from codey.session.store import ConversationStore

from tests.helpers import MemoryPersistence


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def persistence() -> MemoryPersistence:
    return MemoryPersistence()


@pytest.fixture
def store(event_bus: EventBus, persistence: MemoryPersistence) -> ConversationStore:
    conversation_store = ConversationStore(event_bus, persistence)
    conversation_store.load()
    return conversation_store


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep settings, logs and environment overrides away from the real user profile."""

    for name in (
        "CODEY_API_KEY",
        "CODEY_BASE_URL",
        "CODEY_ORGANIZATION",
        "CODEY_MODE",
        "CODEY_CONVERSATIONS_PATH",
        "CODEY_DEBUG_LOGGING",
        "CODEY_REQUEST_TIMEOUT",
        "CODEY_TEMPERATURE",
        "CODEY_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CODEY_LOG_DIR", str(tmp_path_factory.mktemp("logs")))
