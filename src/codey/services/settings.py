"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping

from cryptography.fernet import Fernet, InvalidToken

__all__ = [
    "AutocompleteSettings",
    "Settings",
    "SettingsStore",
    "SecretVault",
    "parse_override",
    "redact_secret",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".codey"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_API_KEY_FIELD = "api_key_ciphertext"
_SECRET_PREFIX = "fernet"
_ENV_OVERRIDES: Mapping[str, str] = {
    "CODEY_API_KEY": "api_key",
    "CODEY_BASE_URL": "base_url",
    "CODEY_ORGANIZATION": "organization",
    "CODEY_MODE": "mode",
    "CODEY_CONVERSATIONS_PATH": "conversations_path",
    "CODEY_DEBUG_LOGGING": "debug_logging",
    "CODEY_REQUEST_TIMEOUT": "request_timeout",
    "CODEY_TEMPERATURE": "temperature",
}
_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled", ""}


@dataclass(slots=True)
class AutocompleteSettings:
    """Input suggestion toggles."""

    enabled: bool = True
    min_length: int = 5
    suppress_on_trailing_space: bool = True
    debounce_seconds: float = 0.4


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between runs."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    organization: str | None = None
    mode: str = "vibe"
    mode_models: dict[str, str] = field(default_factory=dict)
    request_timeout: float = 90.0
    temperature: float | None = None
    default_headers: dict[str, str] = field(default_factory=dict)
    debug_logging: bool = False
    conversations_path: str | None = None
    autocomplete: AutocompleteSettings = field(default_factory=AutocompleteSettings)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce {value!r} to a boolean.")


def _parse_optional_float(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and value.strip().lower() in {"", "none", "null"}):
        return None
    return float(value)


def _parse_optional_str(value: Any) -> str | None:
    text = "" if value is None else str(value).strip()
    return text or None


_FIELD_PARSERS: Mapping[str, Callable[[Any], Any]] = {
    "base_url": str,
    "api_key": str,
    "organization": _parse_optional_str,
    "mode": lambda value: str(value).strip().lower(),
    "request_timeout": float,
    "temperature": _parse_optional_float,
    "debug_logging": _parse_bool,
    "conversations_path": _parse_optional_str,
    "autocomplete.enabled": _parse_bool,
    "autocomplete.min_length": int,
    "autocomplete.suppress_on_trailing_space": _parse_bool,
    "autocomplete.debounce_seconds": float,
}


def parse_override(key: str, value: Any) -> tuple[str, Any]:
    """Coerce one ``key=value`` override to the type of the matching field.

    ``mode_models.<mode>`` and ``default_headers.<name>`` address entries of
    the mapping fields.

    Raises:
        ValueError: If the key is unknown or the value cannot be converted.
    """

    head, dot, tail = key.strip().partition(".")
    head = head.replace("-", "_")
    if head in ("mode_models", "default_headers") and tail:
        return f"{head}.{tail}", str(value)
    normalized = f"{head}{dot}{tail.replace('-', '_')}"
    parser = _FIELD_PARSERS.get(normalized)
    if parser is None:
        raise ValueError(f"Unknown setting: {key}")
    try:
        return normalized, parser(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid value for {key}: {value!r}") from exc


class SecretVault:
    """Encrypts the API key with a Fernet key stored next to the settings file."""

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    @property
    def strategy(self) -> str:
        return _SECRET_PREFIX

    @property
    def key_path(self) -> Path:
        return self._key_path

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{_SECRET_PREFIX}:{token}"

    def decrypt(self, token: str | None) -> str:
        """Return the plaintext for ``token``.

        Raises:
            ValueError: If the token was not produced by this vault's key.
        """
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if prefix != _SECRET_PREFIX or not payload:
            raise ValueError(f"Unsupported secret token prefix: {prefix!r}")
        try:
            return self._get_fernet().decrypt(payload.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc

    def _get_fernet(self) -> Fernet:
        if self._fernet is None:
            self._fernet = Fernet(self._load_or_create_key())
        return self._fernet

    def _load_or_create_key(self) -> bytes:
        path = self._key_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            return path.read_bytes().strip()
        key = Fernet.generate_key()
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = Path(path).expanduser() if path is not None else _DEFAULT_SETTINGS_PATH
        self._vault = vault or SecretVault(key_path=self._path.with_suffix(".key"))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, then apply environment and CLI overrides.

        CLI overrides win over environment variables, which win over the file.
        """

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            autocomplete_payload = data.get("autocomplete")
            if isinstance(autocomplete_payload, Mapping):
                try:
                    data["autocomplete"] = AutocompleteSettings(**autocomplete_payload)
                except TypeError:
                    data["autocomplete"] = AutocompleteSettings()
            else:
                data.pop("autocomplete", None)
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            if plaintext_key:
                settings = replace(settings, api_key=plaintext_key)

        version_mismatch = bool(payload) and payload.get("version") != _SETTINGS_VERSION
        if needs_migration or version_mismatch:
            try:
                self.save(settings)
            except OSError as exc:
                LOGGER.warning("Failed to migrate settings payload: %s", exc)

        settings = self._apply_env_overrides(settings)
        if overrides:
            settings = self.apply_overrides(settings, overrides, source="CLI")
        return settings

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        """Return ``settings`` with typed ``overrides`` applied.

        Keys use the same dotted form accepted by :func:`parse_override`.

        Raises:
            ValueError: If a key is unknown or a value is invalid.
        """

        updates: Dict[str, Any] = {}
        autocomplete_updates: Dict[str, Any] = {}
        mode_models = dict(settings.mode_models)
        headers = dict(settings.default_headers)
        for raw_key, raw_value in overrides.items():
            key, value = parse_override(raw_key, raw_value)
            head, _, tail = key.partition(".")
            if head == "mode_models":
                mode_models[tail] = value
                updates["mode_models"] = mode_models
            elif head == "default_headers":
                headers[tail] = value
                updates["default_headers"] = headers
            elif head == "autocomplete":
                autocomplete_updates[tail] = value
            else:
                updates[key] = value
        if autocomplete_updates:
            updates["autocomplete"] = replace(settings.autocomplete, **autocomplete_updates)
        if updates:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(updates))
            settings = replace(settings, **updates)
        return settings

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        if api_key:
            data[_API_KEY_FIELD] = self._vault.encrypt(api_key)
        data["version"] = _SETTINGS_VERSION
        data["secret_backend"] = self._vault.strategy
        return data

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            LOGGER.warning("Settings file %s does not hold an object", self._path)
            return {}
        return data

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value is not None:
                overrides[field_name] = value
        if not overrides:
            return settings
        try:
            return self.apply_overrides(settings, overrides, source="environment")
        except ValueError as exc:
            LOGGER.warning("Ignoring environment overrides: %s", exc)
            return settings

    def _decrypt_api_key(self, ciphertext: str | None, legacy_plaintext: str | None) -> tuple[str, bool]:
        if ciphertext:
            try:
                return self._vault.decrypt(ciphertext), False
            except ValueError as exc:
                LOGGER.warning("Unable to decrypt API key: %s", exc)
                return "", False
        if legacy_plaintext:
            LOGGER.info("Detected plaintext API key; migrating to encrypted storage.")
            return legacy_plaintext, True
        return "", False


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"
