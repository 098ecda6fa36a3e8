"""Resolve named prompts, sessions and implicit context into directives."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from ..documents.document_model import DocumentModel
from .directive import Directive, Role, Turn, block_turns
from .indexer import Block, index_all, index_blocks

LOGGER = logging.getLogger(__name__)


def find_prompt(document: DocumentModel, name: str, system_message: Optional[str] = None) -> Directive:
    """Return a directive built from the first block named ``name``.

    A missing block is not an error: the directive then carries only the system
    message.
    """

    for block in index_all(document):
        if block.name == name:
            turns = [Turn(role=Role.USER, content=block.body)]
            if block.result is not None:
                turns.append(Turn(role=Role.ASSISTANT, content=block.result))
            return Directive(system_message=system_message, turns=tuple(turns))
    LOGGER.debug("No block named %r; using system message only", name)
    return Directive(system_message=system_message)


def find_session(
    document: DocumentModel,
    session_id: str,
    system_message: Optional[str] = None,
    *,
    upper_bound: int | None = None,
) -> Directive:
    """Return the conversation recorded in ``session_id`` blocks before ``upper_bound``.

    Each block contributes a user turn and an assistant turn. Blocks that have
    no result yet contribute an empty assistant turn rather than being skipped.
    """

    blocks = index_blocks(document, upper_bound, session=session_id)
    return Directive(system_message=system_message, turns=_alternating_turns(blocks))


def find_history(
    document: DocumentModel,
    system_message: Optional[str] = None,
    *,
    upper_bound: int | None = None,
    language: str | None = None,
) -> Directive:
    """Return every visible block of ``language`` as alternating turns, ignoring sessions."""

    blocks = index_blocks(document, upper_bound, language=language)
    return Directive(system_message=system_message, turns=_alternating_turns(blocks))


def _alternating_turns(blocks: Iterable[Block]) -> tuple[Turn, ...]:
    turns: list[Turn] = []
    for block in blocks:
        turns.extend(block_turns(block.body, block.result))
    return tuple(turns)


__all__ = ["find_prompt", "find_session", "find_history"]
