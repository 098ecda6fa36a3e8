"""Conversation context reconstructed from document blocks."""

from .directive import Directive, DirectiveElement, Role, Turn, assemble
from .indexer import Block, index_blocks
from .resolver import find_history, find_prompt, find_session
from .sources import ContextSource, context_transform, resolve_sources
from .variables import bind_variables, expand, expand_directive

__all__ = [
    "Block",
    "ContextSource",
    "Directive",
    "DirectiveElement",
    "Role",
    "Turn",
    "assemble",
    "bind_variables",
    "context_transform",
    "expand",
    "expand_directive",
    "find_history",
    "find_prompt",
    "find_session",
    "index_blocks",
    "resolve_sources",
]
