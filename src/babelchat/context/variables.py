"""Variable binding and ``$name`` / ``${name}`` template expansion."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, overload

from .directive import Directive, Turn

# One alternation so the braced and bare forms are resolved in a single pass.
_PLACEHOLDER_RE = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_-]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_-]*))"
)
_ESCAPE_RE = re.compile(r"\\(.)")
_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_VAR_ASSIGNMENT_RE = re.compile(
    r'\s*(?P<name>[A-Za-z_][\w-]*)\s*=\s*(?P<value>"(?:[^"\\]|\\.)*"|[^,]*)\s*(?:,|$)'
)


def bind_variables(variables: Mapping[str, Any] | Iterable[tuple[str, Any]] | None) -> dict[str, Any]:
    """Return a fresh ``dict`` of the invocation's variables; callers never mutate it.

    Pairs are accepted as well as mappings; a repeated name keeps its last value.
    Values are kept as-is and only stringified when expanded.
    """

    if not variables:
        return {}
    items = variables.items() if isinstance(variables, Mapping) else variables
    bound: dict[str, Any] = {}
    for name, value in items:
        bound[str(name)] = value
    return bound


def parse_var_header(raw: str | None) -> list[tuple[str, Any]]:
    """Parse a ``:var a=1, b="two"`` header value into ``(name, value)`` pairs."""

    pairs: list[tuple[str, Any]] = []
    text = (raw or "").strip()
    position = 0
    while position < len(text):
        match = _VAR_ASSIGNMENT_RE.match(text, position)
        if not match or match.end() == position:
            break
        pairs.append((match.group("name"), read_literal(match.group("value"))))
        position = match.end()
    return pairs


def read_literal(raw: str) -> Any:
    """Read an Org-babel literal: numbers become numbers, quoted strings are unquoted."""

    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return _ESCAPE_RE.sub(r"\1", value[1:-1])
    if _NUMBER_RE.match(value):
        try:
            return int(value)
        except ValueError:
            return float(value)
    return value


def stringify(value: Any) -> str:
    """Render ``value`` as inserted into a template: strings verbatim, others as literals."""

    if isinstance(value, str):
        return value
    return repr(value)


@overload
def expand(template: str, variables: Mapping[str, Any]) -> str: ...


@overload
def expand(template: list[str], variables: Mapping[str, Any]) -> list[str]: ...


def expand(template: str | list[str], variables: Mapping[str, Any]) -> str | list[str]:
    """Substitute known ``$name`` / ``${name}`` references in ``template``.

    Unknown names are left exactly as written and substituted text is never
    scanned again.
    """

    if isinstance(template, list):
        return [expand(item, variables) for item in template]
    if not variables or "$" not in template:
        return template

    def _replace(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in variables:
            return stringify(variables[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


def expand_directive(directive: Directive, variables: Mapping[str, Any]) -> Directive:
    """Expand every turn of ``directive`` (and its system message when it is a string)."""

    system = directive.system_message
    if isinstance(system, str):
        system = expand(system, variables)
    turns = tuple(Turn(role=turn.role, content=expand(turn.content, variables)) for turn in directive.turns)
    return Directive(system_message=system, turns=turns)


__all__ = [
    "bind_variables",
    "parse_var_header",
    "read_literal",
    "stringify",
    "expand",
    "expand_directive",
]
