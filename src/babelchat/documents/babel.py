"""Execute chat blocks in an :class:`OrgDocument` and write their results back."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping

from ..context.variables import parse_var_header, read_literal
from ..errors import BlockNotFoundError
from ..orchestration.options import InvocationOptions
from ..orchestration.orchestrator import RequestOrchestrator
from .document_model import OrgDocument
from .org_parser import (
    RawElement,
    collapse_header_arguments,
    escape_body,
    header_value,
    parse_header_arguments,
)

LOGGER = logging.getLogger(__name__)

_PROPERTY_RE = re.compile(
    r"^[ \t]*#\+property:[ \t]+header-args(?::(?P<language>[^ \t]+))?[ \t]+(?P<args>.*)$",
    re.IGNORECASE | re.MULTILINE,
)
# Options whose values are names or prose: unquoted, never read as numbers.
_TEXT_OPTIONS = frozenset({"model", "system", "backend", "preset", "prompt", "session", "format", "context"})


def file_header_arguments(text: str, language: str | None) -> Dict[str, str]:
    """Collect ``#+PROPERTY: header-args[:LANG]`` defaults that apply to ``language``.

    Generic ``header-args`` lines apply first, language-specific ones override them.
    """

    generic: list[tuple[str, str]] = []
    specific: list[tuple[str, str]] = []
    for match in _PROPERTY_RE.finditer(text or ""):
        target = match.group("language")
        pairs = parse_header_arguments(match.group("args"))
        if target is None:
            generic.extend(pairs)
        elif language is not None and target.lower() == language.lower():
            specific.extend(pairs)
    return collapse_header_arguments(generic + specific)


def header_options(parameters: Mapping[str, str]) -> Dict[str, Any]:
    """Translate header arguments into invocation options."""

    options: Dict[str, Any] = {}
    variables: list[tuple[str, Any]] = []
    for key, raw in parameters.items():
        if key == "var":
            variables.extend(parse_var_header(raw))
            continue
        option = key.replace("-", "_")
        if option in _TEXT_OPTIONS:
            options[option] = header_value(raw)
        else:
            options[option] = read_literal(raw) if raw else raw
    if variables:
        options["variables"] = variables
    return options


class BlockExecutor:
    """Runs the chat block at a point and records the visible value as its result."""

    def __init__(self, orchestrator: RequestOrchestrator, *, language: str | None = None) -> None:
        self._orchestrator = orchestrator
        self._language = language or orchestrator.settings.language

    @property
    def language(self) -> str:
        return self._language

    def block_at(self, document: OrgDocument, point: int) -> RawElement:
        element = document.element_at(point)
        if element is None:
            raise BlockNotFoundError(
                message=f"No source block at offset {point}",
                details={"point": point, "document_id": document.document_id},
            )
        return self._check_language(element)

    def block_named(self, document: OrgDocument, name: str) -> RawElement:
        element = document.element_named(name)
        if element is None:
            raise BlockNotFoundError(
                message=f"No source block named {name!r}",
                details={"name": name, "document_id": document.document_id},
            )
        return self._check_language(element)

    def options_for(
        self,
        document: OrgDocument,
        element: RawElement,
        overrides: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Merge file defaults, block header arguments and ``overrides`` (last wins)."""

        parameters = dict(file_header_arguments(document.text, element.language))
        for key, value in element.parameters.items():
            if key == "var" and parameters.get("var"):
                parameters["var"] = f"{parameters['var']}, {value}"
            else:
                parameters[key] = value
        options = header_options(parameters)
        for key, value in (overrides or {}).items():
            if value is not None:
                options[key] = value
        return options

    def execute_at(
        self,
        document: OrgDocument,
        point: int,
        overrides: Mapping[str, Any] | None = None,
    ) -> str:
        return self.execute_block(document, self.block_at(document, point), overrides)

    def execute_named(
        self,
        document: OrgDocument,
        name: str,
        overrides: Mapping[str, Any] | None = None,
    ) -> str:
        return self.execute_block(document, self.block_named(document, name), overrides)

    def execute_block(
        self,
        document: OrgDocument,
        element: RawElement,
        overrides: Mapping[str, Any] | None = None,
    ) -> str:
        """Invoke the orchestrator for ``element`` and write the returned value.

        The block's own location is the visibility cutoff, so only blocks above
        it contribute turns.
        """

        options = self.options_for(document, element, overrides)
        parsed = InvocationOptions.parse(options)
        value = self._orchestrator.execute(
            document,
            element.text,
            parsed,
            point=element.location,
            language=element.language,
        )
        self.write_result(document, element, value, example=parsed.dry_run)
        return value

    def write_result(
        self,
        document: OrgDocument,
        element: RawElement,
        value: str,
        *,
        example: bool = False,
    ) -> None:
        """Replace the block's result section with ``value`` or insert a new one."""

        rendered = _render_result(value, element.name, example=example)
        section = document.result_section(element.location)
        if section is not None:
            document.replace_text(section.span, rendered)
            LOGGER.debug("Replaced result section of block at %s", element.location)
            return
        end = element.span.end
        prefix = "\n" if document.text[:end].endswith("\n") else "\n\n"
        document.insert_text(end, prefix + rendered)
        LOGGER.debug("Inserted result section after block at %s", element.location)

    def _check_language(self, element: RawElement) -> RawElement:
        if element.language != self._language:
            raise BlockNotFoundError(
                message=f"Block at offset {element.location} is {element.language!r}, not {self._language!r}",
                details={"point": element.location, "language": element.language},
            )
        return element


def _render_result(value: str, name: str | None, *, example: bool) -> str:
    keyword = f"#+RESULTS: {name}" if name else "#+RESULTS:"
    if example:
        return f"{keyword}\n#+begin_example\n{escape_body(value)}\n#+end_example\n"
    return f"{keyword}\n:results:\n{value}\n:end:\n"


__all__ = ["BlockExecutor", "file_header_arguments", "header_options"]
