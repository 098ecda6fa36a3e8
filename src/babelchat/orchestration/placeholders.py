"""Placeholder tokens written into a document while a request is in flight."""

from __future__ import annotations

import re
import uuid

from ..documents.document_model import DocumentModel

TOKEN_PREFIX = "<<babelchat:"
TOKEN_SUFFIX = ">>"
_TOKEN_RE = re.compile(re.escape(TOKEN_PREFIX) + r"[0-9a-f]{32}" + re.escape(TOKEN_SUFFIX))


def new_token() -> str:
    """Return a fresh placeholder: a random hex id between sentinel delimiters."""

    return f"{TOKEN_PREFIX}{uuid.uuid4().hex}{TOKEN_SUFFIX}"


def is_token(text: str) -> bool:
    return bool(_TOKEN_RE.fullmatch(text or ""))


def find_tokens(text: str) -> list[str]:
    """Return every placeholder still present in ``text``, in order."""

    return _TOKEN_RE.findall(text or "")


def replace_token(document: DocumentModel, token: str, replacement: str) -> bool:
    """Replace the first occurrence of ``token``; return ``False`` when it is gone."""

    found = document.find_first(token)
    if found is None:
        return False
    document.replace_text(found, replacement)
    return True


__all__ = ["TOKEN_PREFIX", "TOKEN_SUFFIX", "new_token", "is_token", "find_tokens", "replace_token"]
