"""Request orchestration: build a directive, dispatch it, and resolve its placeholder.

An invocation moves through ``BUILT -> DISPATCHED -> COMPLETED | DROPPED`` or
``BUILT -> DRY_RETURNED``. The document is never locked: the completion handler
searches for the placeholder again when the response arrives and replaces the
first occurrence only.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum, auto
from functools import partial
from pathlib import Path
from typing import Any, Dict, Mapping, Sequence

from ..ai.config import RequestConfig
from ..ai.request_service import (
    CompletionResult,
    Messages,
    RequestServiceProtocol,
    Transform,
    build_messages,
)
from ..context.directive import Directive
from ..context.resolver import find_history, find_prompt, find_session
from ..context.sources import ContextSource, context_transform, resolve_sources
from ..context.variables import expand, expand_directive
from ..documents.document_model import DocumentModel
from ..errors import RequestFailedError
from ..formatting import get_formatter
from ..services.settings import Preset, Settings
from .options import InvocationOptions
from .placeholders import new_token, replace_token

LOGGER = logging.getLogger(__name__)

ERROR_PREFIX = "[babelchat error]"
_RECORD_LIMIT = 256


# -----------------------------------------------------------------------------
# Invocation records
# -----------------------------------------------------------------------------


class InvocationState(Enum):
    """Lifecycle of one invocation."""

    BUILT = auto()
    DISPATCHED = auto()
    COMPLETED = auto()
    DRY_RETURNED = auto()
    DROPPED = auto()


@dataclass(slots=True, frozen=True)
class BuiltRequest:
    """Fully expanded request, ready to be dispatched or returned as a dry run.

    Attributes:
        body: The invocation body after variable expansion.
        directive: System message and prior turns after variable expansion.
        config: Request parameters after preset and option overrides.
        output_format: Formatter applied to the response before insertion.
        context: Sources attached to the system message by a pre-send hook.
    """

    body: str
    directive: Directive
    config: RequestConfig
    output_format: str
    context: tuple[ContextSource, ...] = ()

    def pre_send(self, transforms: Sequence[Transform] = ()) -> tuple[Transform, ...]:
        """Return the hooks to hand to the request service, context first."""

        hooks: tuple[Transform, ...] = (context_transform(self.context),) if self.context else ()
        return hooks + tuple(transforms)

    def messages(self, transforms: Sequence[Transform] = ()) -> Messages:
        return build_messages(self.body, self.directive, self.pre_send(transforms))

    def to_payload(self, transforms: Sequence[Transform] = ()) -> Dict[str, Any]:
        return {
            "body": self.body,
            "directive": self.directive.to_dict(),
            "config": self.config.to_dict(),
            "format": self.output_format,
            "context": [source.label for source in self.context],
            "messages": self.messages(transforms),
        }

    def render(self, transforms: Sequence[Transform] = ()) -> str:
        return json.dumps(self.to_payload(transforms), ensure_ascii=False, indent=2)


@dataclass(slots=True)
class InvocationRecord:
    token: str | None
    document_id: str | None
    request: BuiltRequest
    state: InvocationState = InvocationState.BUILT
    handle: Any = None
    error: RequestFailedError | None = field(default=None)


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class RequestOrchestrator:
    """Turns an invocation into either a dry-run payload or a dispatched request."""

    def __init__(
        self,
        settings: Settings,
        request_service: RequestServiceProtocol,
        *,
        transforms: Sequence[Transform] = (),
    ) -> None:
        self._settings = settings
        self._service = request_service
        self._transforms = tuple(transforms)
        self._live: Dict[str, InvocationRecord] = {}
        self._records: "OrderedDict[str, InvocationRecord]" = OrderedDict()
        self.last_dry_run: InvocationRecord | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def live_tokens(self) -> list[str]:
        return list(self._live)

    def state_of(self, token: str) -> InvocationState | None:
        record = self._records.get(token)
        return record.state if record is not None else None

    def record_for(self, token: str) -> InvocationRecord | None:
        return self._records.get(token)

    def build(
        self,
        document: DocumentModel | None,
        body: str,
        options: Mapping[str, Any] | InvocationOptions | None = None,
        *,
        point: int | None = None,
        language: str | None = None,
    ) -> BuiltRequest:
        """Assemble and expand the request for ``body`` invoked at ``point``."""

        opts = InvocationOptions.parse(options)
        preset = self._resolve_preset(opts.preset)
        system = opts.system or (preset.system if preset else None) or self._settings.system_prompt
        directive = self._resolve_directive(document, opts, system, point, language)
        variables = opts.variables
        config = (
            RequestConfig.from_settings(self._settings)
            .with_preset(preset)
            .merge(
                model=opts.model,
                temperature=opts.temperature,
                max_tokens=opts.max_tokens,
                backend=opts.backend,
            )
        )
        return BuiltRequest(
            body=expand(body, variables),
            directive=expand_directive(directive, variables),
            config=config,
            output_format=opts.format or self._settings.default_format,
            context=self._resolve_context(document, opts.context),
        )

    def execute(
        self,
        document: DocumentModel | None,
        body: str,
        options: Mapping[str, Any] | InvocationOptions | None = None,
        *,
        point: int | None = None,
        language: str | None = None,
    ) -> str:
        """Run one invocation and return the text to show at the invocation site.

        In dry-run mode that is the rendered payload and nothing is sent.
        Otherwise it is a fresh placeholder token; the response replaces it
        once the request service reports completion.
        """

        opts = InvocationOptions.parse(options)
        request = self.build(document, body, opts, point=point, language=language)
        if opts.dry_run:
            self.last_dry_run = InvocationRecord(
                token=None,
                document_id=getattr(document, "document_id", None),
                request=request,
                state=InvocationState.DRY_RETURNED,
            )
            LOGGER.debug("Dry run returned payload with %s turn(s)", len(request.directive.turns))
            return request.render(self._transforms)
        if document is None:
            raise ValueError("A document is required to dispatch a request")
        return self.dispatch(document, request)

    def dispatch(self, document: DocumentModel, request: BuiltRequest) -> str:
        """Submit ``request`` and return the placeholder standing in for its response."""

        token = self._allocate_token()
        record = InvocationRecord(
            token=token,
            document_id=document.document_id,
            request=request,
            state=InvocationState.DISPATCHED,
        )
        self._live[token] = record
        self._remember(token, record)
        on_complete = partial(self._on_complete, document, token, request.output_format)
        try:
            record.handle = self._service.submit(
                request.body,
                request.directive,
                request.config,
                request.pre_send(self._transforms),
                on_complete,
            )
        except Exception:
            self._live.pop(token, None)
            self._records.pop(token, None)
            raise
        LOGGER.info(
            "Dispatched request for document %s (model=%s, token=%s)",
            document.document_id,
            request.config.model,
            token,
        )
        return token

    def complete(
        self,
        document: DocumentModel,
        token: str,
        output_format: str | None,
        result: CompletionResult,
    ) -> InvocationState:
        """Replace the first occurrence of ``token`` with the formatted result."""

        record = self._live.pop(token, None)
        if getattr(document, "closed", False):
            LOGGER.debug("Document %s closed; dropping response for %s", document.document_id, token)
            return self._finish(record, InvocationState.DROPPED, result)

        replacement = self._render_result(result, output_format)
        if not replace_token(document, token, replacement):
            LOGGER.debug("Placeholder %s no longer present; dropping response", token)
            return self._finish(record, InvocationState.DROPPED, result)
        LOGGER.debug("Placeholder %s resolved in document %s", token, document.document_id)
        return self._finish(record, InvocationState.COMPLETED, result)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _on_complete(
        self,
        document: DocumentModel,
        token: str,
        output_format: str | None,
        result: CompletionResult,
    ) -> None:
        self.complete(document, token, output_format, result)

    def _render_result(self, result: CompletionResult, output_format: str | None) -> str:
        if not result.ok:
            error = result.error
            message = error.message if error is not None else "unknown error"
            return f"{ERROR_PREFIX} {message}"
        text = result.text or ""
        formatter = get_formatter(output_format)
        try:
            return formatter(text)
        except Exception:
            LOGGER.exception("Formatting response as %r failed; inserting raw text", output_format)
            return text

    def _resolve_directive(
        self,
        document: DocumentModel | None,
        opts: InvocationOptions,
        system: str | None,
        point: int | None,
        language: str | None,
    ) -> Directive:
        wants_document = opts.prompt or opts.session or opts.history
        if document is None:
            if wants_document:
                LOGGER.warning("No document available; ignoring prompt/session/history options")
            return Directive(system_message=system)
        if opts.prompt:
            return find_prompt(document, opts.prompt, system)
        if opts.session:
            return find_session(document, opts.session, system, upper_bound=point)
        if opts.history:
            return find_history(
                document,
                system,
                upper_bound=point,
                language=language or self._settings.language,
            )
        return Directive(system_message=system)

    def _resolve_context(
        self, document: DocumentModel | None, entries: Sequence[str]
    ) -> tuple[ContextSource, ...]:
        if not entries:
            return ()
        path = getattr(getattr(document, "metadata", None), "path", None)
        base_dir = Path(path).parent if path else None
        return resolve_sources(document, entries, base_dir=base_dir)

    def _resolve_preset(self, name: str | None) -> Preset | None:
        if not name:
            return None
        preset = self._settings.presets.get(name)
        if preset is None:
            LOGGER.warning("Unknown preset %r; using default configuration", name)
        return preset

    def _allocate_token(self) -> str:
        token = new_token()
        while token in self._live:
            token = new_token()
        return token

    def _remember(self, token: str, record: InvocationRecord) -> None:
        self._records[token] = record
        while len(self._records) > _RECORD_LIMIT:
            self._records.popitem(last=False)

    @staticmethod
    def _finish(
        record: InvocationRecord | None,
        state: InvocationState,
        result: CompletionResult,
    ) -> InvocationState:
        if record is not None:
            record.state = state
            record.error = result.error
        return state


__all__ = [
    "ERROR_PREFIX",
    "BuiltRequest",
    "InvocationRecord",
    "InvocationState",
    "RequestOrchestrator",
]
