"""Command-line bootstrap and terminal front-end for the Codey client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, TextIO

from .ai.client import AIClient, ClientSettings
from .ai.errors import CodeyError
from .ai.modes import ChatMode
from .ai.themes import THEME_ERROR_MESSAGE, generate_theme
from .chat.message_model import Attachment
from .chat.segments import code_segments
from .services.capabilities import FileReader, LocalFileReader
from .services.persistence import JsonConversationStore
from .services.settings import Settings, SettingsStore, parse_override, redact_secret
from .session.actions import ActionCoordinator, ActionStatus
from .session.autocomplete import Autocomplete, SuggestionPolicy
from .session.controller import SessionController
from .session.events import (
    ActiveSessionChanged,
    EventBus,
    MessageFinalized,
    MessageRemoved,
    MessageUpdated,
    PersistenceFailed,
    StreamFailed,
)
from .session.store import ConversationStore
from .utils import logging as logging_utils

_LOGGER = logging.getLogger(__name__)
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}

HELP_TEXT = """\
Commands:
  /new                 start a new chat
  /sessions            list chats (most recent first)
  /switch <n>          switch to chat number n
  /rename <title>      rename the current chat
  /delete              delete the current chat
  /mode <name>         switch mode (vibe, hyper, reasoning)
  /attach <path>       attach a file to the next message
  /refactor <n>        refactor code block n of the last reply
  /explain <n>         explain code block n of the last reply
  /theme <text>        generate an accent palette
  /suggest <text>      complete a half-typed message
  /quit                exit
"""

LineReader = Callable[[str], Awaitable[Optional[str]]]


def configure_logging(debug: bool = False, *, force: bool = False) -> Path:
    """Configure file logging for the client."""

    level = logging_utils.resolve_level(debug)
    log_path = logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))
    return log_path


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings, falling back to defaults when the file is unusable.

    Raises:
        ValueError: If ``overrides`` names an unknown setting or an invalid value.
    """

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
    settings = Settings()
    if overrides:
        settings = active_store.apply_overrides(settings, overrides, source="CLI")
    return settings


class TerminalChat:
    """Line-oriented front-end driving the session controller.

    Deltas are written as they arrive by following ``MessageUpdated`` events
    for the active session.
    """

    def __init__(
        self,
        controller: SessionController,
        store: ConversationStore,
        event_bus: EventBus,
        actions: ActionCoordinator,
        *,
        autocomplete: Autocomplete | None = None,
        file_reader: FileReader | None = None,
        output: TextIO | None = None,
    ) -> None:
        self._controller = controller
        self._store = store
        self._bus = event_bus
        self._actions = actions
        self._autocomplete = autocomplete
        self._file_reader = file_reader or LocalFileReader()
        self._output = output or sys.stdout
        self._pending_attachment: Attachment | None = None
        self._printed: dict[int, int] = {}
        self._subscribe()

    @property
    def pending_attachment(self) -> Attachment | None:
        return self._pending_attachment

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self, read_line: LineReader) -> None:
        self._write(f"Codey ({self._controller.mode.value} mode). Type /help for commands.\n")
        while True:
            line = await read_line("> ")
            if line is None:
                break
            if not await self.handle_line(line):
                break

    async def handle_line(self, line: str) -> bool:
        """Process one input line; returns False when the user asked to quit."""

        stripped = line.strip()
        if stripped.startswith("/"):
            command, _, argument = stripped[1:].partition(" ")
            return await self._handle_command(command.lower(), argument.strip())
        await self._send(line)
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _handle_command(self, command: str, argument: str) -> bool:
        if command in {"quit", "exit", "q"}:
            return False
        if command == "help":
            self._write(HELP_TEXT)
        elif command == "new":
            session = self._controller.new_chat()
            self._write(f"Started {session.title}.\n")
        elif command == "sessions":
            self._list_sessions()
        elif command == "switch":
            self._switch(argument)
        elif command == "rename":
            active = self._store.active_session
            if active is not None:
                self._controller.rename_session(active.id, argument)
        elif command == "delete":
            active = self._store.active_session
            if active is not None:
                for message in active.messages:
                    self._actions.forget_message(message.id)
                session = self._controller.delete_session(active.id)
                self._write(f"Deleted. Now in: {session.title}\n")
        elif command == "mode":
            self._set_mode(argument)
        elif command == "attach":
            self._attach(argument)
        elif command in {"refactor", "explain"}:
            await self._code_action(command, argument)
        elif command == "theme":
            await self._theme(argument)
        elif command == "suggest":
            await self._suggest(argument)
        else:
            self._write(f"Unknown command: /{command}\n")
        return True

    def _list_sessions(self) -> None:
        active_id = self._store.active_session_id
        for index, session in enumerate(self._store.list_sessions(), start=1):
            marker = "*" if session.id == active_id else " "
            self._write(f"{marker} {index}. {session.title} ({len(session.messages)} messages)\n")

    def _switch(self, argument: str) -> None:
        sessions = self._store.list_sessions()
        try:
            index = int(argument) - 1
        except ValueError:
            self._write("Usage: /switch <n>\n")
            return
        if not 0 <= index < len(sessions):
            self._write(f"No chat number {argument}.\n")
            return
        session = self._controller.select_session(sessions[index].id)
        self._write(f"Switched to {session.title}.\n")
        for message in session.messages:
            speaker = "you" if message.is_user else "codey"
            self._write(f"[{speaker}] {message.text}\n")

    def _set_mode(self, argument: str) -> None:
        try:
            mode = self._controller.set_mode(argument)
        except ValueError:
            names = ", ".join(item.value for item in ChatMode)
            self._write(f"Unknown mode {argument!r}. Choose one of: {names}\n")
            return
        self._write(f"Mode: {mode.value}\n")

    def _attach(self, argument: str) -> None:
        if not argument:
            self._write("Usage: /attach <path>\n")
            return
        try:
            self._pending_attachment = self._file_reader.read_file(argument)
        except (OSError, ValueError) as exc:
            self._write(f"Could not attach {argument}: {exc}\n")
            return
        self._write(f"Attached {self._pending_attachment.name}.\n")

    async def _code_action(self, command: str, argument: str) -> None:
        session = self._store.active_session
        replies = [m for m in (session.messages if session else []) if not m.is_user and not m.streaming]
        if not replies:
            self._write("No reply to act on yet.\n")
            return
        message = replies[-1]
        blocks = code_segments(message.text)
        try:
            index = int(argument or "1") - 1
        except ValueError:
            index = -1
        if not 0 <= index < len(blocks):
            self._write(f"The last reply has {len(blocks)} code block(s).\n")
            return
        block = blocks[index]
        if command == "refactor":
            refactor = await self._actions.refactor(message.id, index, block.display_code)
            if refactor.status is ActionStatus.FAILED:
                self._write(f"{refactor.error}\n")
            elif refactor.unchanged:
                self._write("No changes suggested.\n")
            else:
                for run in refactor.runs:
                    prefix = {"same": "  ", "added": "+ ", "removed": "- "}[run.kind]
                    for text in run.lines:
                        self._write(f"{prefix}{text}\n")
        else:
            explain = await self._actions.explain(message.id, index, block.display_code, block.language)
            if explain.status is ActionStatus.FAILED:
                self._write(f"{explain.error}\n")
            else:
                self._write(f"{explain.text}\n")

    async def _suggest(self, argument: str) -> None:
        if self._autocomplete is None:
            self._write("Suggestions are turned off.\n")
            return
        suggestion = await self._autocomplete.suggest(argument)
        if suggestion:
            self._write(f"Suggestion: {suggestion}\n")

    async def _theme(self, argument: str) -> None:
        capability = self._controller.capability
        try:
            theme = await generate_theme(capability, self._controller.profile, argument)
        except CodeyError as exc:
            _LOGGER.warning("Theme generation failed: %s", exc)
            self._write(f"{THEME_ERROR_MESSAGE}\n")
            return
        self._write(f"{theme.name}: {theme.c400} / {theme.c500} / {theme.c600}\n")

    # ------------------------------------------------------------------
    # Streaming Output
    # ------------------------------------------------------------------

    async def _send(self, text: str) -> None:
        attachment, self._pending_attachment = self._pending_attachment, None
        try:
            await self._controller.submit(text, attachment)
        except CodeyError as exc:
            self._pending_attachment = attachment
            self._write(f"{exc.user_message}\n")

    def _subscribe(self) -> None:
        self._bus.subscribe(MessageUpdated, self._on_message_updated)
        self._bus.subscribe(MessageFinalized, self._on_message_finalized)
        self._bus.subscribe(MessageRemoved, self._on_message_removed)
        self._bus.subscribe(StreamFailed, self._on_stream_failed)
        self._bus.subscribe(ActiveSessionChanged, self._on_active_session_changed)
        self._bus.subscribe(PersistenceFailed, self._on_persistence_failed)

    def _on_message_updated(self, event: MessageUpdated) -> None:
        if event.session_id != self._store.active_session_id:
            return
        printed = self._printed.get(event.message_id, 0)
        self._write(event.text[printed:])
        self._printed[event.message_id] = len(event.text)

    def _on_message_finalized(self, event: MessageFinalized | MessageRemoved) -> None:
        if self._printed.pop(event.message_id, None) is not None:
            self._write("\n")

    def _on_message_removed(self, event: MessageRemoved) -> None:
        self._actions.forget_message(event.message_id)
        self._on_message_finalized(event)

    def _on_stream_failed(self, event: StreamFailed) -> None:
        if event.session_id != self._store.active_session_id:
            return
        message = self._store.get_message(event.session_id, event.message_id)
        self._write(f"{message.text}\n")

    def _on_active_session_changed(self, event: ActiveSessionChanged) -> None:
        self._printed.clear()

    def _on_persistence_failed(self, event: PersistenceFailed) -> None:
        self._write(f"(could not save conversations: {event.error})\n")

    def _write(self, text: str) -> None:
        if not text:
            return
        self._output.write(text)
        self._output.flush()


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `codey` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("CODEY_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings or os.environ.get("CODEY_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
        if args.mode:
            cli_overrides["mode"] = args.mode
        settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    if args.dump_settings:
        _dump_settings(settings, settings_store)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    try:
        asyncio.run(_run_terminal(settings))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def _run_terminal(settings: Settings) -> None:
    client = AIClient(
        ClientSettings(
            base_url=settings.base_url,
            api_key=settings.api_key,
            organization=settings.organization,
            request_timeout=settings.request_timeout,
            default_headers=settings.default_headers or None,
            debug_logging=settings.debug_logging,
        )
    )
    bus: EventBus = EventBus()
    persistence = JsonConversationStore(settings.conversations_path, background=True)
    store = ConversationStore(bus, persistence)
    try:
        mode = ChatMode.parse(settings.mode)
    except ValueError:
        _LOGGER.warning("Unknown mode %r in settings; using vibe.", settings.mode)
        mode = ChatMode.VIBE
    controller = SessionController(
        store,
        client,
        bus,
        mode=mode,
        mode_models=settings.mode_models,
        temperature=settings.temperature,
    )
    controller.start()
    actions = ActionCoordinator(client, bus, profile_provider=lambda: controller.profile)
    autocomplete = None
    if settings.autocomplete.enabled:
        policy = SuggestionPolicy(
            min_length=settings.autocomplete.min_length,
            suppress_on_trailing_space=settings.autocomplete.suppress_on_trailing_space,
            debounce_seconds=settings.autocomplete.debounce_seconds,
        )
        autocomplete = Autocomplete(client, bus, profile_provider=lambda: controller.profile, policy=policy)
    chat = TerminalChat(controller, store, bus, actions, autocomplete=autocomplete)
    try:
        await chat.run(_read_stdin_line)
    finally:
        controller.shutdown()
        await client.aclose()
        try:
            persistence.close()
        except Exception as exc:
            _LOGGER.warning("Final conversation save failed: %s", exc)


async def _read_stdin_line(prompt: str) -> str | None:
    try:
        return await asyncio.to_thread(input, prompt)
    except EOFError:
        return None


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="codey",
        description="Chat with Codey, a streaming coding assistant, from the terminal.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings",
        metavar="PATH",
        help="Override the default ~/.codey/settings.json path.",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ChatMode],
        help="Chat mode for this run.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        if not key.strip():
            raise ValueError("Override is missing a field name.")
        name, value = parse_override(key, raw_value.strip())
        overrides[name] = value
    return overrides


def _dump_settings(settings: Settings, store: SettingsStore, *, stream: TextIO | None = None) -> None:
    payload = asdict(settings)
    payload["api_key"] = redact_secret(settings.api_key)
    payload["settings_path"] = str(store.path)
    payload["secret_backend"] = store.vault.strategy
    target = stream or sys.stdout
    json.dump(payload, target, indent=2, sort_keys=True)
    target.write("\n")


__all__ = ["TerminalChat", "configure_logging", "load_settings", "main"]
