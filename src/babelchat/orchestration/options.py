"""Invocation options accepted by :meth:`RequestOrchestrator.execute`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

from jsonschema import Draft7Validator

from ..context.variables import bind_variables
from ..errors import InvalidOptionsError

LOGGER = logging.getLogger(__name__)

OPTION_KEYS: tuple[str, ...] = (
    "model",
    "temperature",
    "max_tokens",
    "system",
    "backend",
    "dry_run",
    "preset",
    "context",
    "history",
    "prompt",
    "session",
    "format",
    "variables",
)
_FALSE_STRINGS = frozenset({"", "nil", "no", "false", "0", "off"})
_NULLABLE_TEXT = {"type": ["string", "null"]}
_FLAG = {"type": ["boolean", "string", "integer", "null"]}
OPTIONS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "model": _NULLABLE_TEXT,
        "temperature": {"type": ["number", "string", "null"]},
        "max_tokens": {"type": ["integer", "string", "null"]},
        "system": _NULLABLE_TEXT,
        "backend": _NULLABLE_TEXT,
        "dry_run": _FLAG,
        "preset": _NULLABLE_TEXT,
        "context": {"type": ["string", "array", "null"], "items": {"type": "string"}},
        "history": _FLAG,
        "prompt": _NULLABLE_TEXT,
        "session": _NULLABLE_TEXT,
        "format": _NULLABLE_TEXT,
        "variables": {"type": ["object", "array", "null"]},
    },
}
_VALIDATOR = Draft7Validator(OPTIONS_SCHEMA)


def normalize_flag(value: Any) -> bool:
    """Read a flag: ``None``/``False`` and a few false-like strings are false."""

    if value is None or value is False:
        return False
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    if isinstance(value, (int, float)):
        return value != 0
    return True


def context_entries(value: Any) -> tuple[str, ...]:
    """Split a ``context`` value into source names: a list, or a comma-separated string."""

    if value is None:
        return ()
    if isinstance(value, str):
        if value.strip().lower() in _FALSE_STRINGS:
            return ()
        value = value.split(",")
    entries = (str(item).strip().strip('"') for item in value)
    return tuple(dict.fromkeys(entry for entry in entries if entry))


@dataclass(slots=True, frozen=True)
class InvocationOptions:
    """Validated options of one invocation."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    system: str | None = None
    backend: str | None = None
    dry_run: bool = False
    preset: str | None = None
    context: tuple[str, ...] = ()
    history: bool = False
    prompt: str | None = None
    session: str | None = None
    format: str | None = None
    variables: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, raw: Mapping[str, Any] | "InvocationOptions" | None) -> "InvocationOptions":
        """Validate ``raw`` and coerce string values (as written in header arguments)."""

        if isinstance(raw, InvocationOptions):
            return raw
        payload = dict(raw or {})
        problems = [
            f"{'.'.join(str(part) for part in error.path) or '<root>'}: {error.message}"
            for error in sorted(_VALIDATOR.iter_errors(payload), key=lambda item: list(item.path))
        ]
        ignored = sorted(key for key in payload if key not in OPTION_KEYS)
        if ignored:
            LOGGER.debug("Ignoring unrecognized option(s): %s", ignored)

        temperature = _coerce_number(payload.get("temperature"), float, "temperature", problems)
        max_tokens = _coerce_number(payload.get("max_tokens"), int, "max_tokens", problems)
        if problems:
            raise InvalidOptionsError(
                message="Invalid invocation options: " + "; ".join(problems),
                problems=problems,
            )

        return cls(
            model=_text(payload.get("model")),
            temperature=temperature,
            max_tokens=max_tokens,
            system=_text(payload.get("system")),
            backend=_text(payload.get("backend")),
            dry_run=normalize_flag(payload.get("dry_run")),
            preset=_text(payload.get("preset")),
            context=context_entries(payload.get("context")),
            history=normalize_flag(payload.get("history")),
            prompt=_text(payload.get("prompt")),
            session=_text(payload.get("session")),
            format=_text(payload.get("format")),
            variables=bind_variables(payload.get("variables")),
        )


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_number(value: Any, kind: type, label: str, problems: list[str]) -> Any:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value or value.lower() == "nil":
            return None
    try:
        return kind(value)
    except (TypeError, ValueError):
        problems.append(f"{label}: {value!r} is not a valid {kind.__name__}")
        return None


__all__ = ["OPTION_KEYS", "OPTIONS_SCHEMA", "InvocationOptions", "context_entries", "normalize_flag"]
