"""Document protocol consumed by the context engine plus an in-memory Org document."""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable

from ..core.ranges import TextRange
from .org_parser import RawElement, ResultSection, find_result_section, scan_src_blocks

LOGGER = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)


def _hash_text(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


@runtime_checkable
class DocumentModel(Protocol):
    """Operations the context engine needs from a document engine."""

    document_id: str

    def scan_elements(self, upper_bound: int | None = None) -> Sequence[RawElement]: ...

    def locate_result(self, location: int) -> str | None: ...

    def read_text(self, text_range: TextRange) -> str: ...

    def replace_text(self, text_range: TextRange, new_text: str) -> None: ...

    def find_first(self, token: str) -> TextRange | None: ...


@dataclass(slots=True)
class DocumentMetadata:
    """Metadata describing the currently loaded document."""

    path: Optional[Path] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(slots=True)
class OrgDocument:
    """Mutable Org text buffer implementing :class:`DocumentModel`."""

    text: str = ""
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    dirty: bool = False
    closed: bool = False
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version_id: int = 1
    content_hash: str = field(default_factory=str)
    _scan_cache: tuple[int, list[RawElement]] | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.content_hash:
            self.content_hash = _hash_text(self.text)

    @classmethod
    def from_path(cls, path: Path | str) -> "OrgDocument":
        resolved = Path(path).expanduser()
        text = resolved.read_text(encoding="utf-8")
        return cls(text=text, metadata=DocumentMetadata(path=resolved))

    def save(self, path: Path | str | None = None) -> Path:
        """Write the buffer to disk atomically and clear the dirty flag."""

        target = Path(path).expanduser() if path else self.metadata.path
        if target is None:
            raise ValueError("Document has no path; pass one explicitly")
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        tmp_path.write_text(self.text, encoding="utf-8")
        tmp_path.replace(target)
        self.metadata.path = target
        self.dirty = False
        LOGGER.debug("Saved document %s to %s", self.document_id, target)
        return target

    def close(self) -> None:
        self.closed = True

    # ------------------------------------------------------------------
    # DocumentModel
    # ------------------------------------------------------------------
    def scan_elements(self, upper_bound: int | None = None) -> list[RawElement]:
        elements = self._elements()
        if upper_bound is None:
            return list(elements)
        return [element for element in elements if element.location < upper_bound]

    def locate_result(self, location: int) -> str | None:
        section = self.result_section(location)
        return section.content if section is not None else None

    def read_text(self, text_range: TextRange) -> str:
        bounded = TextRange.from_value(text_range).clamp(upper=len(self.text))
        return self.text[bounded.start : bounded.end]

    def replace_text(self, text_range: TextRange, new_text: str) -> None:
        bounded = TextRange.from_value(text_range).clamp(upper=len(self.text))
        self.update_text(self.text[: bounded.start] + new_text + self.text[bounded.end :])

    def find_first(self, token: str) -> TextRange | None:
        if not token:
            return None
        index = self.text.find(token)
        if index < 0:
            return None
        return TextRange(index, index + len(token))

    # ------------------------------------------------------------------
    # Editing helpers
    # ------------------------------------------------------------------
    def insert_text(self, offset: int, new_text: str) -> None:
        self.replace_text(TextRange.caret(offset), new_text)

    def update_text(self, new_text: str) -> None:
        """Update the document text and mark it dirty."""

        self.text = new_text
        self.dirty = True
        self.metadata.updated_at = _utcnow()
        self.version_id += 1
        self.content_hash = _hash_text(new_text)

    def element_at(self, offset: int) -> RawElement | None:
        """Return the block whose span contains ``offset``."""

        for element in self._elements():
            if element.span.contains(offset):
                return element
        return None

    def element_named(self, name: str) -> RawElement | None:
        for element in self._elements():
            if element.name == name:
                return element
        return None

    def result_section(self, location: int) -> ResultSection | None:
        for element in self._elements():
            if element.location == location:
                return find_result_section(self.text, element.span.end)
        return None

    def offset_for_line(self, line_number: int) -> int:
        """Return the offset of the 1-based ``line_number`` (clamped to the buffer)."""

        if line_number <= 1:
            return 0
        offset = 0
        for _ in range(line_number - 1):
            newline = self.text.find("\n", offset)
            if newline < 0:
                return len(self.text)
            offset = newline + 1
        return offset

    def snapshot(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "document_id": self.document_id,
            "version_id": self.version_id,
            "content_hash": self.content_hash,
            "length": len(self.text),
            "dirty": self.dirty,
        }
        if self.metadata.path:
            payload["path"] = str(self.metadata.path)
        return payload

    def _elements(self) -> list[RawElement]:
        cached = self._scan_cache
        if cached is not None and cached[0] == self.version_id:
            return cached[1]
        elements = scan_src_blocks(self.text)
        self._scan_cache = (self.version_id, elements)
        return elements


__all__ = ["DocumentModel", "DocumentMetadata", "OrgDocument"]
