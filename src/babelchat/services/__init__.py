"""Service layer helpers (settings persistence)."""

from .settings import BackendSettings, Preset, Settings, SettingsStore

__all__ = ["BackendSettings", "Preset", "Settings", "SettingsStore"]
