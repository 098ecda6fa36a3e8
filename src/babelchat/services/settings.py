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
    "Settings",
    "BackendSettings",
    "Preset",
    "SettingsStore",
    "SecretVault",
    "redact_secret",
    "redacted_payload",
    "TRUE_VALUES",
]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".babelchat"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})


def _env_flag(raw: str) -> bool:
    return raw.strip().lower() in TRUE_VALUES


# environment variable -> (settings field, parser)
_ENV_FIELDS: Mapping[str, tuple[str, Callable[[str], Any]]] = {
    "BABELCHAT_API_KEY": ("api_key", str),
    "BABELCHAT_BASE_URL": ("base_url", str),
    "BABELCHAT_MODEL": ("model", str),
    "BABELCHAT_ORGANIZATION": ("organization", str),
    "BABELCHAT_LANGUAGE": ("language", str),
    "BABELCHAT_FORMAT": ("default_format", str),
    "BABELCHAT_SYSTEM_PROMPT": ("system_prompt", str),
    "BABELCHAT_DEBUG_LOGGING": ("debug_logging", _env_flag),
    "BABELCHAT_REQUEST_TIMEOUT": ("request_timeout", float),
    "BABELCHAT_TEMPERATURE": ("temperature", float),
    "BABELCHAT_MAX_TOKENS": ("max_tokens", int),
    "BABELCHAT_MAX_RETRIES": ("max_retries", int),
}
_API_KEY_FIELD = "api_key_ciphertext"


@dataclass(slots=True)
class BackendSettings:
    """Connection details for one OpenAI-compatible endpoint."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str | None = None
    organization: str | None = None


@dataclass(slots=True)
class Preset:
    """Named bundle of request defaults selected with the ``preset`` option."""

    system: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    base_url: str = "https://api.openai.com/v1"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    temperature: float | None = None
    max_tokens: int | None = None
    organization: str | None = None
    request_timeout: float = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    language: str = "babelchat"
    default_format: str = "raw"
    system_prompt: str | None = None
    default_backend: str = "openai"
    backends: dict[str, BackendSettings] = field(default_factory=dict)
    presets: dict[str, Preset] = field(default_factory=dict)
    default_headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    debug_logging: bool = False

    def backend(self, name: str | None) -> BackendSettings | None:
        """Return the backend registered under ``name``.

        The default backend name always resolves, built from the top-level
        connection fields when it is not registered explicitly.
        """

        key = (name or self.default_backend or "").strip()
        if key in self.backends:
            return self.backends[key]
        if key == self.default_backend:
            return BackendSettings(
                base_url=self.base_url,
                api_key=self.api_key,
                model=self.model,
                organization=self.organization,
            )
        return None

    def backend_names(self) -> list[str]:
        names = [self.default_backend, *self.backends]
        return list(dict.fromkeys(name for name in names if name))


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None, *, vault: SecretVault | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH
        key_path = self._path.with_suffix(".key")
        self._vault = vault or SecretVault(key_path=key_path)

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    @property
    def vault(self) -> SecretVault:
        return self._vault

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        needs_migration = False

        if payload:
            plaintext_key, migrated = self._decrypt_api_key(
                payload.pop(_API_KEY_FIELD, None), payload.pop("api_key", None)
            )
            needs_migration = migrated
            data = _filter_fields(payload)
            data["backends"] = self._load_backends(data.get("backends"))
            data["presets"] = _load_presets(data.get("presets"))
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

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        return self._apply_env_overrides(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = self._serialize(settings)
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug(
            "Settings saved to %s: %d backend(s), %d preset(s)",
            self._path,
            len(settings.backends),
            len(settings.presets),
        )
        return self._path

    def _serialize(self, settings: Settings) -> Dict[str, Any]:
        data = asdict(settings)
        api_key = data.pop("api_key", "") or ""
        ciphertext = self._encrypt_secret_value(api_key, field_name="API key")
        if ciphertext:
            data[_API_KEY_FIELD] = ciphertext
        backends: Dict[str, Any] = {}
        for name, backend in (data.get("backends") or {}).items():
            entry = dict(backend)
            secret = entry.pop("api_key", "") or ""
            token = self._encrypt_secret_value(secret, field_name=f"API key for backend {name}")
            if token:
                entry[_API_KEY_FIELD] = token
            backends[name] = entry
        data["backends"] = backends
        data["version"] = _SETTINGS_VERSION
        return data

    def _read_payload(self) -> Dict[str, Any]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not hold a JSON object", self._path)
            return {}
        return payload

    def _load_backends(self, payload: Any) -> dict[str, BackendSettings]:
        if not isinstance(payload, Mapping):
            return {}
        allowed = {item.name for item in fields(BackendSettings)}
        backends: dict[str, BackendSettings] = {}
        for name, entry in payload.items():
            if not isinstance(entry, Mapping):
                LOGGER.debug("Ignoring backend %s with non-mapping payload", name)
                continue
            data = {key: value for key, value in entry.items() if key in allowed}
            ciphertext = entry.get(_API_KEY_FIELD)
            if ciphertext:
                try:
                    data["api_key"] = self._vault.decrypt(ciphertext)
                except ValueError as exc:
                    LOGGER.warning("Unable to decrypt API key for backend %s: %s", name, exc)
                    data["api_key"] = ""
            backends[str(name)] = BackendSettings(**data)
        return backends

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {item.name for item in fields(Settings)}
        filtered = {key: value for key, value in overrides.items() if key in allowed and value is not None}
        if isinstance(filtered.get("metadata"), Mapping):
            filtered["metadata"] = {**settings.metadata, **filtered["metadata"]}
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, (field_name, parse) in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                overrides[field_name] = parse(raw)
            except ValueError:
                LOGGER.warning("Ignoring environment override %s=%r: expected %s", env_name, raw, parse.__name__)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings

    def _encrypt_secret_value(self, secret: str, *, field_name: str) -> str | None:
        if not secret:
            return None
        try:
            token = self._vault.encrypt(secret)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to encrypt %s: %s", field_name, exc)
            return None
        LOGGER.debug("%s encrypted", field_name)
        return token

    def _decrypt_api_key(
        self, ciphertext: str | None, legacy_plaintext: str | None
    ) -> tuple[str, bool]:
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


class SecretVault:
    """Encrypts API keys with a symmetric Fernet key stored next to the settings file."""

    prefix = "fernet"

    def __init__(self, *, key_path: Path | None = None) -> None:
        self._key_path = key_path or (_SETTINGS_DIR / "settings.key")
        self._fernet: Fernet | None = None

    def encrypt(self, secret: str) -> str:
        if not secret:
            return ""
        token = self._get_fernet().encrypt(secret.encode("utf-8")).decode("ascii")
        return f"{self.prefix}:{token}"

    def decrypt(self, token: str | None) -> str:
        if not token:
            return ""
        prefix, _, payload = token.partition(":")
        if not payload:
            prefix, payload = self.prefix, token
        if prefix != self.prefix:
            raise ValueError(f"Unknown secret token prefix {prefix!r}")
        try:
            raw = self._get_fernet().decrypt(payload.encode("ascii"))
        except InvalidToken as exc:
            raise ValueError("Invalid Fernet token") from exc
        return raw.decode("utf-8")

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
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_bytes(key)
        if os.name != "nt":  # pragma: no cover - depends on OS
            os.chmod(tmp_path, 0o600)
        tmp_path.replace(path)
        return key


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {item.name for item in fields(Settings)} - {"api_key"}
    return {key: value for key, value in payload.items() if key in allowed}


def _load_presets(payload: Any) -> dict[str, Preset]:
    if not isinstance(payload, Mapping):
        return {}
    allowed = {item.name for item in fields(Preset)}
    presets: dict[str, Preset] = {}
    for name, entry in payload.items():
        if isinstance(entry, str):
            presets[str(name)] = Preset(system=entry)
        elif isinstance(entry, Mapping):
            presets[str(name)] = Preset(**{key: value for key, value in entry.items() if key in allowed})
        else:
            LOGGER.debug("Ignoring preset %s with unsupported payload %r", name, type(entry))
    return presets


def redact_secret(value: str) -> str:
    stripped = (value or "").strip()
    if not stripped:
        return ""
    if len(stripped) <= 4:
        return "*" * len(stripped)
    return f"{stripped[:2]}{'*' * (len(stripped) - 4)}{stripped[-2:]}"


def redacted_payload(settings: Settings) -> Dict[str, Any]:
    """Return ``settings`` as a dictionary with every API key redacted."""

    data = asdict(settings)
    data["api_key"] = redact_secret(settings.api_key)
    for backend in data.get("backends", {}).values():
        backend["api_key"] = redact_secret(backend.get("api_key", ""))
    return data
