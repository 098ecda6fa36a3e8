"""Invocation options, placeholders and the request orchestrator."""

from .completions import suggest
from .options import InvocationOptions, normalize_flag
from .orchestrator import ERROR_PREFIX, BuiltRequest, InvocationState, RequestOrchestrator
from .placeholders import find_tokens, new_token

__all__ = [
    "ERROR_PREFIX",
    "BuiltRequest",
    "InvocationOptions",
    "InvocationState",
    "RequestOrchestrator",
    "find_tokens",
    "new_token",
    "normalize_flag",
    "suggest",
]
