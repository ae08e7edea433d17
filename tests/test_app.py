"""Tests covering the terminal front-end and bootstrap helpers."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Iterable

import pytest

from codey import app
from codey.ai.modes import ChatMode
from codey.ai.requests import InlineBinaryPart
from codey.services.settings import SecretVault, Settings, SettingsStore
from codey.session.actions import ActionCoordinator, ActionStatus
from codey.session.autocomplete import Autocomplete, SuggestionPolicy
from codey.session.controller import SessionController
from codey.session.events import EventBus
from codey.session.store import ConversationStore

from tests.helpers import MemoryPersistence, ScriptedCapability, transport_error


class _Harness:
    def __init__(self, capability: ScriptedCapability) -> None:
        self.capability = capability
        self.bus: EventBus = EventBus()
        self.store = ConversationStore(self.bus, MemoryPersistence())
        self.controller = SessionController(self.store, capability, self.bus)
        self.controller.start()
        self.output = io.StringIO()
        self.actions = ActionCoordinator(capability, self.bus, profile_provider=lambda: self.controller.profile)
        autocomplete = Autocomplete(
            capability,
            self.bus,
            profile_provider=lambda: self.controller.profile,
            policy=SuggestionPolicy(debounce_seconds=0),
        )
        self.chat = app.TerminalChat(
            self.controller,
            self.store,
            self.bus,
            self.actions,
            autocomplete=autocomplete,
            output=self.output,
        )

    async def run(self, lines: Iterable[str]) -> str:
        for line in lines:
            await self.chat.handle_line(line)
        return self.output.getvalue()


# =============================================================================
# Chatting
# =============================================================================


@pytest.mark.asyncio
async def test_reply_is_printed_as_it_streams() -> None:
    harness = _Harness(ScriptedCapability(streams=[["Hel", "lo, ", "world"]]))

    output = await harness.run(["Say hello"])

    assert output == "Hello, world\n"
    assert harness.store.active_session.title == "Say hello"


@pytest.mark.asyncio
async def test_empty_input_shows_hint_without_sending() -> None:
    harness = _Harness(ScriptedCapability())

    output = await harness.run(["   "])

    assert output == "Type a message or attach a file first.\n"
    assert harness.capability.stream_requests == []


@pytest.mark.asyncio
async def test_stream_failure_prints_error_notice() -> None:
    harness = _Harness(ScriptedCapability(streams=[["par", transport_error()]]))

    output = await harness.run(["hi"])

    assert output.endswith("Sorry, I encountered an error. Please try again.\n")


@pytest.mark.asyncio
async def test_attachment_is_sent_with_next_message(tmp_path: Path) -> None:
    target = tmp_path / "diagram.png"
    target.write_bytes(b"png")
    harness = _Harness(ScriptedCapability(streams=[["Nice."]]))

    await harness.run([f"/attach {target}"])
    assert harness.chat.pending_attachment is not None
    await harness.run([""])

    assert harness.chat.pending_attachment is None
    (request,) = harness.capability.stream_requests
    assert isinstance(request.history[-1].parts[0], InlineBinaryPart)
    assert harness.store.active_session.title == "File: diagram.png"


@pytest.mark.asyncio
async def test_attach_missing_file_reports_error(tmp_path: Path) -> None:
    harness = _Harness(ScriptedCapability())

    output = await harness.run([f"/attach {tmp_path / 'missing.txt'}"])

    assert output.startswith("Could not attach")
    assert harness.chat.pending_attachment is None


# =============================================================================
# Commands
# =============================================================================


@pytest.mark.asyncio
async def test_session_commands() -> None:
    harness = _Harness(ScriptedCapability())
    first_id = harness.store.active_session_id

    await harness.run(["/rename First chat", "/new", "/switch 2"])
    output = harness.output.getvalue()

    assert "Started New Chat." in output
    assert "Switched to First chat." in output
    assert harness.store.active_session_id == first_id
    harness.output.truncate(0)
    harness.output.seek(0)
    await harness.chat.handle_line("/sessions")
    assert harness.output.getvalue().splitlines() == ["  1. New Chat (0 messages)", "* 2. First chat (0 messages)"]


@pytest.mark.asyncio
async def test_delete_last_chat_starts_fresh_one() -> None:
    harness = _Harness(ScriptedCapability())

    output = await harness.run(["/delete"])

    assert output == "Deleted. Now in: New Chat\n"
    assert len(harness.store.list_sessions()) == 1


@pytest.mark.asyncio
async def test_mode_command() -> None:
    harness = _Harness(ScriptedCapability())

    output = await harness.run(["/mode reasoning", "/mode turbo"])

    assert harness.controller.mode is ChatMode.REASONING
    assert "Mode: reasoning\n" in output
    assert "Unknown mode 'turbo'" in output


@pytest.mark.asyncio
async def test_refactor_command_prints_diff() -> None:
    capability = ScriptedCapability(
        streams=[["Try:\n```py\nx=1\n```"]],
        replies=["```\nx = 1\n```"],
    )
    harness = _Harness(capability)

    await harness.run(["fix it"])
    harness.output.truncate(0)
    harness.output.seek(0)
    output = await harness.run(["/refactor 1"])

    assert output == "- x=1\n+ x = 1\n"


@pytest.mark.asyncio
async def test_deleting_chat_clears_code_action_state() -> None:
    capability = ScriptedCapability(streams=[["```py\nx=1\n```"]], replies=["x = 1"])
    harness = _Harness(capability)
    await harness.run(["fix it"])
    reply = harness.store.active_session.messages[-1]
    await harness.run(["/refactor 1"])
    assert harness.actions.get(reply.id, 0).refactor.status is ActionStatus.DONE

    await harness.run(["/delete"])

    assert harness.actions.get(reply.id, 0).refactor.status is ActionStatus.IDLE


@pytest.mark.asyncio
async def test_code_action_without_blocks() -> None:
    harness = _Harness(ScriptedCapability(streams=[["no code here"]]))

    await harness.run(["hi"])
    output = await harness.run(["/explain 1"])

    assert output.endswith("The last reply has 0 code block(s).\n")


@pytest.mark.asyncio
async def test_explain_command_prints_explanation() -> None:
    capability = ScriptedCapability(streams=[["```js\nlet a\n```"]], replies=["Declares a."])
    harness = _Harness(capability)

    await harness.run(["show code"])
    output = await harness.run(["/explain"])

    assert output.endswith("Declares a.\n")
    assert "```js\nlet a\n```" in capability.one_shot_requests[0].history[0].text


@pytest.mark.asyncio
async def test_theme_command_reports_failures() -> None:
    capability = ScriptedCapability(replies=['{"name": "Broken"}'])
    harness = _Harness(capability)

    output = await harness.run(["/theme", "/theme sunset"])

    assert output == (
        "Failed to generate theme. Please try a different prompt.\n"
        "Failed to generate theme. Please try a different prompt.\n"
    )


@pytest.mark.asyncio
async def test_suggest_command() -> None:
    harness = _Harness(ScriptedCapability(replies=["a list in place?"]))

    output = await harness.run(["/suggest how do I reverse"])

    assert output == "Suggestion: a list in place?\n"


@pytest.mark.asyncio
async def test_quit_and_unknown_commands() -> None:
    harness = _Harness(ScriptedCapability())

    assert await harness.chat.handle_line("/bogus") is True
    assert await harness.chat.handle_line("/quit") is False
    assert harness.output.getvalue() == "Unknown command: /bogus\n"


@pytest.mark.asyncio
async def test_run_stops_at_end_of_input() -> None:
    harness = _Harness(ScriptedCapability(streams=[["ok"]]))
    lines = iter(["hello", None])

    async def read_line(prompt: str) -> str | None:
        return next(lines)

    await harness.chat.run(read_line)

    assert "ok\n" in harness.output.getvalue()


# =============================================================================
# Bootstrap Helpers
# =============================================================================


def test_coerce_cli_overrides_parses_values() -> None:
    overrides = app._coerce_cli_overrides(["debug_logging=true", "mode_models.hyper = tiny", "temperature=0.5"])

    assert overrides == {"debug_logging": True, "mode_models.hyper": "tiny", "temperature": 0.5}


@pytest.mark.parametrize("entry", ["debug_logging", "=value", "nope=1"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_load_settings_applies_overrides(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))

    settings = app.load_settings(store=store, overrides={"mode": "hyper"})

    assert settings.mode == "hyper"


def test_dump_settings_redacts_api_key(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path / "settings.json", vault=SecretVault(key_path=tmp_path / "settings.key"))
    stream = io.StringIO()

    app._dump_settings(Settings(api_key="sk-secret-value"), store, stream=stream)
    payload = json.loads(stream.getvalue())

    assert payload["api_key"] == "sk***********ue"
    assert payload["settings_path"] == str(store.path)
    assert payload["secret_backend"] == "fernet"
