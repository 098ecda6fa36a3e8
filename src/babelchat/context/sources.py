"""Context sources named by the ``context`` option and the hook that attaches them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from ..documents.document_model import DocumentModel
from .indexer import index_all

LOGGER = logging.getLogger(__name__)

CONTEXT_PREAMBLE = "Use the following context when answering."

_Messages = List[Dict[str, str]]


@dataclass(slots=True, frozen=True)
class ContextSource:
    """Text pulled in from a named block or a file."""

    label: str
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"label": self.label, "text": self.text}


def resolve_sources(
    document: DocumentModel | None,
    entries: Iterable[str],
    *,
    base_dir: Optional[Path] = None,
) -> tuple[ContextSource, ...]:
    """Resolve each entry to a ``#+name:``d block body or, failing that, a file.

    Relative paths are read from ``base_dir`` when it is given. Entries that
    match neither are skipped with a warning.
    """

    named = {block.name: block for block in index_all(document) if block.name} if document else {}
    sources: list[ContextSource] = []
    for entry in entries:
        block = named.get(entry)
        if block is not None:
            sources.append(ContextSource(label=entry, text=block.body))
            continue
        path = Path(entry).expanduser()
        if not path.is_absolute() and base_dir is not None:
            path = base_dir / path
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            LOGGER.warning("Context source %r is neither a named block nor a readable file: %s", entry, exc)
            continue
        sources.append(ContextSource(label=entry, text=text))
    return tuple(sources)


def render_sources(sources: Iterable[ContextSource]) -> str:
    sections = [f"--- {source.label} ---\n{source.text.rstrip()}" for source in sources]
    return "\n\n".join([CONTEXT_PREAMBLE, *sections])


def context_transform(sources: Iterable[ContextSource]) -> Callable[[_Messages], _Messages]:
    """Return a pre-send hook that appends the sources to the system message.

    A system message is added in front when the request has none.
    """

    rendered = render_sources(sources)

    def _attach(messages: _Messages) -> _Messages:
        if messages and messages[0].get("role") == "system":
            head = {**messages[0], "content": f"{messages[0]['content']}\n\n{rendered}"}
            return [head, *messages[1:]]
        return [{"role": "system", "content": rendered}, *messages]

    return _attach


__all__ = ["CONTEXT_PREAMBLE", "ContextSource", "context_transform", "render_sources", "resolve_sources"]
