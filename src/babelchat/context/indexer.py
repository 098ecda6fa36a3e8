"""Snapshot pass turning document elements into ordered :class:`Block` records."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from ..documents.document_model import DocumentModel
from ..documents.org_parser import SRC_BLOCK, header_value

LOGGER = logging.getLogger(__name__)

SESSION_PARAMETER = "session"


@dataclass(slots=True, frozen=True)
class Block:
    """Immutable snapshot of one block taken at scan time.

    ``location`` is only meaningful for the document version that was scanned.
    """

    location: int
    language: Optional[str]
    parameters: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    body: str = ""
    result: Optional[str] = None
    name: Optional[str] = None

    @property
    def session(self) -> Optional[str]:
        return header_value(self.parameters.get(SESSION_PARAMETER))


def index_blocks(
    document: DocumentModel,
    upper_bound: int | None,
    *,
    session: str | None = None,
    language: str | None = None,
) -> list[Block]:
    """Return blocks located strictly before ``upper_bound`` in document order.

    ``session`` keeps only blocks whose session parameter, once unquoted,
    equals it exactly; ``language`` keeps only blocks declared in that
    language. Blocks sharing a position keep the order the document reported
    them in.
    """

    elements = document.scan_elements(upper_bound)
    ordered = sorted(enumerate(elements), key=lambda item: (item[1].location, item[0]))
    blocks: list[Block] = []
    for _, element in ordered:
        if element.type != SRC_BLOCK:
            continue
        if upper_bound is not None and element.location >= upper_bound:
            continue
        if session is not None and header_value(element.parameters.get(SESSION_PARAMETER)) != session:
            continue
        if language is not None and element.language != language:
            continue
        blocks.append(
            Block(
                location=element.location,
                language=element.language,
                parameters=MappingProxyType(dict(element.parameters)),
                body=element.text,
                result=document.locate_result(element.location),
                name=getattr(element, "name", None),
            )
        )
    LOGGER.debug(
        "Indexed %s block(s) before %s (session=%s, language=%s)",
        len(blocks),
        upper_bound,
        session,
        language,
    )
    return blocks


def index_all(document: DocumentModel) -> list[Block]:
    """Return every block in the document."""

    return index_blocks(document, None)


__all__ = ["Block", "SESSION_PARAMETER", "index_blocks", "index_all"]
