"""Candidate values for option keys, used by editors to complete header arguments."""

from __future__ import annotations

from typing import Callable, Iterable, Mapping

from ..context.indexer import SESSION_PARAMETER
from ..documents.document_model import DocumentModel
from ..documents.org_parser import header_value
from ..formatting import formatter_names
from ..services.settings import Settings

Suggestion = tuple[str, str]
CandidateSource = Callable[[Settings, "DocumentModel | None"], Iterable[str]]


def _models(settings: Settings, _document: DocumentModel | None) -> Iterable[str]:
    seen = [settings.model]
    for backend in settings.backends.values():
        if backend.model:
            seen.append(backend.model)
    for preset in settings.presets.values():
        if preset.model:
            seen.append(preset.model)
    return seen


def _backends(settings: Settings, _document: DocumentModel | None) -> Iterable[str]:
    return settings.backend_names()


def _presets(settings: Settings, _document: DocumentModel | None) -> Iterable[str]:
    return sorted(settings.presets)


def _formats(_settings: Settings, _document: DocumentModel | None) -> Iterable[str]:
    return formatter_names()


def _flags(_settings: Settings, _document: DocumentModel | None) -> Iterable[str]:
    return ("yes", "no")


def _sessions(_settings: Settings, document: DocumentModel | None) -> Iterable[str]:
    if document is None:
        return ()
    return [
        header_value(element.parameters[SESSION_PARAMETER]) or ""
        for element in document.scan_elements()
        if element.parameters.get(SESSION_PARAMETER)
    ]


def _prompts(_settings: Settings, document: DocumentModel | None) -> Iterable[str]:
    if document is None:
        return ()
    return [element.name for element in document.scan_elements() if element.name]


COMPLETION_TABLE: Mapping[str, tuple[CandidateSource, str]] = {
    "model": (_models, "model"),
    "backend": (_backends, "backend"),
    "preset": (_presets, "preset"),
    "format": (_formats, "output format"),
    "dry_run": (_flags, "flag"),
    "context": (_prompts, "named block or file"),
    "history": (_flags, "flag"),
    "session": (_sessions, "session"),
    "prompt": (_prompts, "named block"),
}


def suggest(
    option_key: str,
    settings: Settings,
    document: DocumentModel | None = None,
) -> list[Suggestion]:
    """Return ``(candidate, annotation)`` pairs for ``option_key``; unknown keys get none."""

    entry = COMPLETION_TABLE.get(option_key.replace("-", "_").lstrip(":"))
    if entry is None:
        return []
    source, annotation = entry
    suggestions: list[Suggestion] = []
    seen: set[str] = set()
    for candidate in source(settings, document):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        suggestions.append((candidate, annotation))
    return suggestions


__all__ = ["COMPLETION_TABLE", "Suggestion", "suggest"]
