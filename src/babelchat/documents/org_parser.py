"""Read-only scanner for Org-style source blocks and their result sections."""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field
from typing import Iterator, Mapping

from ..core.ranges import TextRange

SRC_BLOCK = "src-block"

_NAME_RE = re.compile(r"^[ \t]*#\+name:[ \t]*(?P<name>\S.*?)[ \t]*$", re.IGNORECASE)
_BEGIN_SRC_RE = re.compile(
    r"^[ \t]*#\+begin_src(?:[ \t]+(?P<language>[^ \t:][^ \t]*))?(?P<args>.*)$", re.IGNORECASE
)
_END_SRC_RE = re.compile(r"^[ \t]*#\+end_src[ \t]*$", re.IGNORECASE)
_RESULTS_RE = re.compile(r"^[ \t]*#\+results(?:\[[^\]]*\])?:[ \t]*(?P<name>.*?)[ \t]*$", re.IGNORECASE)
_BEGIN_BLOCK_RE = re.compile(r"^[ \t]*#\+begin_(?P<kind>\w+)\b", re.IGNORECASE)
_DRAWER_OPEN_RE = re.compile(r"^[ \t]*:results:[ \t]*$", re.IGNORECASE)
_DRAWER_CLOSE_RE = re.compile(r"^[ \t]*:end:[ \t]*$", re.IGNORECASE)
_FIXED_WIDTH_RE = re.compile(r"^[ \t]*:(?: (?P<text>.*)|)$")
_KEYWORD_RE = re.compile(r"^[ \t]*#\+")
_HEADING_RE = re.compile(r"^\*+ ")
_HEADER_TOKEN_RE = re.compile(r'"(?:[^"\\]|\\.)*"|\S+')
_HEADER_KEY_RE = re.compile(r"^:(?P<key>[A-Za-z_][\w-]*)$")
_HEADER_ESCAPE_RE = re.compile(r"\\(.)")


@dataclass(slots=True, frozen=True)
class RawElement:
    """Element record reported by a document scan.

    ``location`` is the offset of the ``#+begin_src`` line; ``span`` covers the
    block through its ``#+end_src`` line (newline included when present).
    """

    type: str
    location: int
    language: str | None
    parameters: Mapping[str, str]
    text: str
    name: str | None = None
    span: TextRange = field(default_factory=lambda: TextRange(0, 0))


@dataclass(slots=True, frozen=True)
class ResultSection:
    """Location of a ``#+RESULTS:`` section attached to a block."""

    keyword_range: TextRange
    content_range: TextRange
    content: str | None

    @property
    def span(self) -> TextRange:
        return TextRange(self.keyword_range.start, self.content_range.end)


@dataclass(slots=True)
class _Line:
    start: int
    end: int
    text: str

    @property
    def next_start(self) -> int:
        return self.end


def iter_lines(text: str) -> Iterator[_Line]:
    """Yield lines with absolute offsets; ``end`` includes the newline."""

    offset = 0
    for raw in text.splitlines(keepends=True):
        yield _Line(start=offset, end=offset + len(raw), text=raw.rstrip("\r\n"))
        offset += len(raw)


def parse_header_arguments(raw: str) -> list[tuple[str, str]]:
    """Split ``:key value ...`` header arguments into ordered pairs.

    Double-quoted values are kept intact, including their quotes.
    """

    pairs: list[tuple[str, str]] = []
    key: str | None = None
    values: list[str] = []
    for match in _HEADER_TOKEN_RE.finditer(raw or ""):
        token = match.group(0)
        key_match = _HEADER_KEY_RE.match(token)
        if key_match:
            if key is not None:
                pairs.append((key, " ".join(values)))
            key = key_match.group("key").lower()
            values = []
            continue
        if key is not None:
            values.append(token)
    if key is not None:
        pairs.append((key, " ".join(values)))
    return pairs


def header_value(raw: str | None) -> str | None:
    """Return a header value as text: one double-quoted string loses its quotes.

    No number conversion happens, so ``01`` stays ``01``.
    """

    if raw is None:
        return None
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"' and _HEADER_TOKEN_RE.fullmatch(value):
        return _HEADER_ESCAPE_RE.sub(r"\1", value[1:-1])
    return value


def collapse_header_arguments(pairs: list[tuple[str, str]]) -> dict[str, str]:
    """Fold header pairs into a mapping; repeated ``:var`` entries are joined."""

    collapsed: dict[str, str] = {}
    for key, value in pairs:
        if key == "var" and collapsed.get("var"):
            collapsed["var"] = f"{collapsed['var']}, {value}"
        else:
            collapsed[key] = value
    return collapsed


def scan_src_blocks(text: str) -> list[RawElement]:
    """Return every terminated source block in ``text`` in document order."""

    elements: list[RawElement] = []
    lines = list(iter_lines(text))
    pending_name: str | None = None
    index = 0
    while index < len(lines):
        line = lines[index]
        name_match = _NAME_RE.match(line.text)
        if name_match:
            pending_name = name_match.group("name")
            index += 1
            continue
        begin = _BEGIN_SRC_RE.match(line.text)
        if not begin:
            pending_name = None
            index += 1
            continue
        end_index = _find_end(lines, index + 1, _END_SRC_RE)
        if end_index is None:
            break
        body_lines = [item.text for item in lines[index + 1 : end_index]]
        parameters = collapse_header_arguments(parse_header_arguments(begin.group("args")))
        elements.append(
            RawElement(
                type=SRC_BLOCK,
                location=line.start,
                language=begin.group("language"),
                parameters=parameters,
                text=_unescape_body(textwrap.dedent("\n".join(body_lines))),
                name=pending_name,
                span=TextRange(line.start, lines[end_index].end),
            )
        )
        pending_name = None
        index = end_index + 1
    return elements


def find_result_section(text: str, block_end: int) -> ResultSection | None:
    """Locate the ``#+RESULTS:`` section following a block ending at ``block_end``."""

    lines = [line for line in iter_lines(text) if line.start >= block_end]
    index = 0
    while index < len(lines) and not lines[index].text.strip():
        index += 1
    if index >= len(lines) or not _RESULTS_RE.match(lines[index].text):
        return None
    keyword = lines[index]
    keyword_range = TextRange(keyword.start, keyword.end)
    body = lines[index + 1 :]
    if not body or not body[0].text.strip():
        return ResultSection(keyword_range, TextRange.caret(keyword.end), None)

    first = body[0]
    if _DRAWER_OPEN_RE.match(first.text):
        close = _find_end(body, 1, _DRAWER_CLOSE_RE)
        if close is not None:
            content = "\n".join(item.text for item in body[1:close])
            return ResultSection(keyword_range, TextRange(first.start, body[close].end), content)

    block = _BEGIN_BLOCK_RE.match(first.text)
    if block:
        kind = block.group("kind")
        close_re = re.compile(rf"^[ \t]*#\+end_{re.escape(kind)}[ \t]*$", re.IGNORECASE)
        close = _find_end(body, 1, close_re)
        if close is not None:
            content = textwrap.dedent("\n".join(item.text for item in body[1:close]))
            return ResultSection(
                keyword_range, TextRange(first.start, body[close].end), _unescape_body(content)
            )

    if _FIXED_WIDTH_RE.match(first.text):
        collected: list[str] = []
        last = first
        for item in body:
            match = _FIXED_WIDTH_RE.match(item.text)
            if not match:
                break
            collected.append(match.group("text") or "")
            last = item
        return ResultSection(keyword_range, TextRange(first.start, last.end), "\n".join(collected))

    collected = []
    last = first
    for item in body:
        if not item.text.strip() or _KEYWORD_RE.match(item.text) or _HEADING_RE.match(item.text):
            break
        collected.append(item.text)
        last = item
    if not collected:
        return ResultSection(keyword_range, TextRange.caret(keyword.end), None)
    return ResultSection(keyword_range, TextRange(first.start, last.end), "\n".join(collected))


def escape_body(text: str) -> str:
    """Protect lines that Org would read as headings or keywords inside a block."""

    escaped = []
    for line in text.split("\n"):
        if line.startswith("*") or line.lstrip().startswith("#+"):
            line = f",{line}"
        escaped.append(line)
    return "\n".join(escaped)


def _unescape_body(text: str) -> str:
    unescaped = []
    for line in text.split("\n"):
        stripped = line.lstrip()
        if stripped.startswith(",*") or stripped.startswith(",#+"):
            indent = line[: len(line) - len(stripped)]
            line = indent + stripped[1:]
        unescaped.append(line)
    return "\n".join(unescaped)


def _find_end(lines: list[_Line], start: int, pattern: re.Pattern[str]) -> int | None:
    for index in range(start, len(lines)):
        if pattern.match(lines[index].text):
            return index
    return None


__all__ = [
    "SRC_BLOCK",
    "RawElement",
    "ResultSection",
    "iter_lines",
    "parse_header_arguments",
    "collapse_header_arguments",
    "header_value",
    "scan_src_blocks",
    "find_result_section",
    "escape_body",
]
