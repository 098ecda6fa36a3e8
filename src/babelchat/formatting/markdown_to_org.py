"""Markdown to Org conversion for responses inserted into Org documents."""

from __future__ import annotations

import logging
from typing import Callable, Sequence

from markdown_it import MarkdownIt
from markdown_it.token import Token

from ..documents.org_parser import escape_body

LOGGER = logging.getLogger(__name__)

Formatter = Callable[[str], str]

_PARSER = MarkdownIt("commonmark").enable(["table", "strikethrough"])
_INLINE_MARKERS = {
    "strong_open": "*",
    "strong_close": "*",
    "em_open": "/",
    "em_close": "/",
    "s_open": "+",
    "s_close": "+",
}


def markdown_to_org(text: str) -> str:
    """Convert Markdown ``text`` into equivalent Org markup."""

    if not text or not text.strip():
        return text
    renderer = _OrgRenderer()
    return renderer.render(_PARSER.parse(text))


def identity(text: str) -> str:
    return text


_FORMATTERS: dict[str, Formatter] = {
    "raw": identity,
    "markdown": identity,
    "org": markdown_to_org,
}


def get_formatter(name: str | None) -> Formatter:
    """Return the formatter registered for ``name``; unknown names format nothing."""

    key = (name or "raw").strip().lower()
    formatter = _FORMATTERS.get(key)
    if formatter is None:
        LOGGER.warning("Unknown output format %r; inserting response unchanged", name)
        return identity
    return formatter


def formatter_names() -> list[str]:
    return sorted(_FORMATTERS)


class _OrgRenderer:
    def __init__(self) -> None:
        self._lines: list[str] = []
        self._indents: list[int] = []
        self._ordered: list[int | None] = []
        self._pending_bullet: tuple[int, str] | None = None
        self._table: list[list[str]] | None = None
        self._header_rows = 0

    def render(self, tokens: Sequence[Token]) -> str:
        index = 0
        while index < len(tokens):
            index = self._render_block(tokens, index)
        lines: list[str] = []
        for line in self._lines:
            if not line.strip() and (not lines or not lines[-1].strip()):
                continue
            lines.append(line.rstrip())
        while lines and not lines[-1]:
            lines.pop()
        return "\n".join(lines)

    def _render_block(self, tokens: Sequence[Token], index: int) -> int:
        token = tokens[index]
        kind = token.type
        if kind == "heading_open":
            level = int(token.tag[1:])
            self._emit(f"{'*' * level} {self._inline(tokens[index + 1])}")
            return index + 3
        if kind == "paragraph_open":
            for line in self._inline(tokens[index + 1]).split("\n"):
                self._emit(line)
            if not token.hidden:
                self._blank()
            return index + 3
        if kind in ("bullet_list_open", "ordered_list_open"):
            start = token.attrGet("start") if kind == "ordered_list_open" else None
            self._ordered.append(int(start or 1) if kind == "ordered_list_open" else None)
            return index + 1
        if kind in ("bullet_list_close", "ordered_list_close"):
            self._ordered.pop()
            if not self._ordered:
                self._blank()
            return index + 1
        if kind == "list_item_open":
            base = self._indents[-1] if self._indents else 0
            number = self._ordered[-1] if self._ordered else None
            if number is None:
                bullet = "- "
            else:
                bullet = f"{number}. "
                self._ordered[-1] = number + 1
            self._pending_bullet = (base, bullet)
            self._indents.append(base + len(bullet))
            return index + 1
        if kind == "list_item_close":
            self._indents.pop()
            return index + 1
        if kind in ("fence", "code_block"):
            language = (token.info or "").split()[0] if token.info else ""
            body = escape_body(token.content.rstrip("\n"))
            if language:
                self._emit(f"#+begin_src {language}")
                self._emit_block(body)
                self._emit("#+end_src")
            else:
                self._emit("#+begin_example")
                self._emit_block(body)
                self._emit("#+end_example")
            self._blank()
            return index + 1
        if kind == "blockquote_open":
            self._emit("#+begin_quote")
            return index + 1
        if kind == "blockquote_close":
            self._trim_blank()
            self._emit("#+end_quote")
            self._blank()
            return index + 1
        if kind == "hr":
            self._emit("-----")
            self._blank()
            return index + 1
        if kind == "html_block":
            self._emit_block(token.content.rstrip("\n"))
            return index + 1
        if kind == "table_open":
            self._table = []
            self._header_rows = 0
            return index + 1
        if kind == "thead_close" and self._table is not None:
            self._header_rows = len(self._table)
            return index + 1
        if kind == "tr_open" and self._table is not None:
            self._table.append([])
            return index + 1
        if kind == "inline" and self._table is not None and self._table:
            self._table[-1].append(self._inline(token).replace("|", "\\vert{}"))
            return index + 1
        if kind == "table_close":
            self._flush_table()
            return index + 1
        return index + 1

    def _inline(self, token: Token) -> str:
        parts: list[str] = []
        links: list[tuple[str, int]] = []
        for child in token.children or []:
            kind = child.type
            if kind == "text":
                parts.append(child.content)
            elif kind == "code_inline":
                parts.append(f"~{child.content}~")
            elif kind in _INLINE_MARKERS:
                parts.append(_INLINE_MARKERS[kind])
            elif kind in ("softbreak", "hardbreak"):
                parts.append("\n")
            elif kind == "link_open":
                links.append((str(child.attrGet("href") or ""), len(parts)))
            elif kind == "link_close" and links:
                href, start = links.pop()
                label = "".join(parts[start:])
                del parts[start:]
                parts.append(f"[[{href}]]" if not label or label == href else f"[[{href}][{label}]]")
            elif kind == "image":
                parts.append(f"[[{child.attrGet('src') or ''}]]")
            elif kind == "html_inline":
                parts.append(child.content)
        return "".join(parts)

    def _flush_table(self) -> None:
        rows = self._table or []
        self._table = None
        if not rows:
            return
        width = max(len(row) for row in rows)
        for position, row in enumerate(rows):
            cells = row + [""] * (width - len(row))
            self._emit("| " + " | ".join(cells) + " |")
            if self._header_rows and position == self._header_rows - 1:
                self._emit("|" + "+".join("-" * (len(cell) + 2) for cell in cells) + "|")
        self._blank()

    def _emit_block(self, text: str) -> None:
        for line in text.split("\n"):
            self._emit(line)

    def _emit(self, line: str) -> None:
        if self._pending_bullet is not None:
            base, bullet = self._pending_bullet
            self._pending_bullet = None
            self._lines.append(" " * base + bullet + line)
            return
        if self._indents and line:
            self._lines.append(" " * self._indents[-1] + line)
            return
        self._lines.append(line)

    def _blank(self) -> None:
        self._lines.append("")

    def _trim_blank(self) -> None:
        while self._lines and not self._lines[-1].strip():
            self._lines.pop()


__all__ = ["Formatter", "markdown_to_org", "identity", "get_formatter", "formatter_names"]
