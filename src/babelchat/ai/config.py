"""Immutable per-request configuration merged from settings, presets and options."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict

from ..services.settings import Preset, Settings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RequestConfig:
    """Model parameters for one request; overrides produce a new instance."""

    model: str
    temperature: float | None = None
    max_tokens: int | None = None
    backend: str | None = None
    stream: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "RequestConfig":
        return cls(
            model=settings.model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            backend=settings.default_backend,
        )

    def merge(self, **overrides: Any) -> "RequestConfig":
        """Return a copy with every non-``None`` override applied.

        ``stream`` stays disabled whatever the overrides say.
        """

        updates = {key: value for key, value in overrides.items() if value is not None}
        updates.pop("stream", None)
        if not updates:
            return self
        return replace(self, **updates)

    def with_preset(self, preset: Preset | None) -> "RequestConfig":
        if preset is None:
            return self
        return self.merge(model=preset.model, temperature=preset.temperature, max_tokens=preset.max_tokens)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_backend(settings: Settings, config: RequestConfig) -> RequestConfig:
    """Fall back to the default backend when ``config.backend`` is unknown."""

    if settings.backend(config.backend) is not None:
        return config
    LOGGER.warning(
        "Unknown backend %r; falling back to default backend %r",
        config.backend,
        settings.default_backend,
    )
    return replace(config, backend=settings.default_backend)


__all__ = ["RequestConfig", "resolve_backend"]
