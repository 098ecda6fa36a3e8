"""Request service: runs one chat completion per submission as an asyncio task."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from ..context.directive import Directive
from ..errors import RequestFailedError
from ..services.settings import Settings
from .client import AIClient, ClientSettings
from .config import RequestConfig, resolve_backend

LOGGER = logging.getLogger(__name__)

Messages = List[Dict[str, str]]
Transform = Callable[[Messages], Messages]


@dataclass(slots=True, frozen=True)
class CompletionResult:
    """Outcome handed to a completion callback: response text or an error."""

    text: Optional[str] = None
    error: Optional[RequestFailedError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


CompletionCallback = Callable[[CompletionResult], None]


@dataclass(slots=True)
class RequestHandle:
    """Handle for an in-flight request."""

    request_id: str
    task: "asyncio.Task[None]"
    config: RequestConfig
    messages: Messages = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.task.done()

    async def wait(self) -> None:
        await asyncio.shield(self.task)


class RequestServiceProtocol(Protocol):
    def submit(
        self,
        body: str,
        directive: Directive,
        config: RequestConfig,
        transforms: Sequence[Transform],
        on_complete: CompletionCallback,
    ) -> Any: ...


def build_messages(body: str, directive: Directive, transforms: Sequence[Transform] = ()) -> Messages:
    """Render ``directive`` plus ``body`` as chat messages and run each transform in order."""

    messages = directive.to_messages(body)
    for transform in transforms:
        messages = transform(messages)
    return messages


ClientFactory = Callable[[ClientSettings], AIClient]


class RequestService:
    """Submits chat requests through one :class:`AIClient` per configured backend."""

    def __init__(self, settings: Settings, *, client_factory: ClientFactory | None = None) -> None:
        self._settings = settings
        self._client_factory = client_factory or AIClient
        self._clients: Dict[str, AIClient] = {}
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(
        self,
        body: str,
        directive: Directive,
        config: RequestConfig,
        transforms: Sequence[Transform],
        on_complete: CompletionCallback,
    ) -> RequestHandle:
        """Schedule the request on the running loop and return immediately.

        ``on_complete`` runs later from the scheduled task, never from inside
        this call.
        """

        resolved = resolve_backend(self._settings, config)
        messages = build_messages(body, directive, transforms)
        request_id = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._run(request_id, messages, resolved, on_complete),
            name=f"babelchat-request-{request_id[:8]}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        task.add_done_callback(partial(self._report_cancelled, request_id, on_complete))
        LOGGER.debug(
            "Submitted request %s (backend=%s, model=%s, %s message(s))",
            request_id,
            resolved.backend,
            resolved.model,
            len(messages),
        )
        return RequestHandle(request_id=request_id, task=task, config=resolved, messages=messages)

    async def drain(self) -> None:
        """Wait until every submitted request has delivered its callback."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        for name, client in list(self._clients.items()):
            try:
                await client.aclose()
            except Exception as exc:
                LOGGER.debug("Closing client for backend %s failed: %s", name, exc)
        self._clients.clear()

    def client_for(self, backend: str | None) -> AIClient:
        key = backend or self._settings.default_backend
        client = self._clients.get(key)
        if client is None:
            backend_settings = self._settings.backend(key)
            if backend_settings is None:
                raise KeyError(f"Unknown backend {key!r}")
            client = self._client_factory(ClientSettings.for_backend(self._settings, backend_settings))
            self._clients[key] = client
        return client

    async def _run(
        self,
        request_id: str,
        messages: Messages,
        config: RequestConfig,
        on_complete: CompletionCallback,
    ) -> None:
        try:
            client = self.client_for(config.backend)
            text = await client.complete_chat(
                messages,
                model=config.model,
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            )
        except asyncio.CancelledError:
            LOGGER.info("Request %s cancelled before completion", request_id)
            raise
        except Exception as exc:
            LOGGER.warning("Request %s failed: %s", request_id, exc)
            result = CompletionResult(error=RequestFailedError.from_exception(exc))
        else:
            LOGGER.debug("Request %s completed with %s character(s)", request_id, len(text))
            result = CompletionResult(text=text)

        self._deliver(request_id, on_complete, result)

    def _report_cancelled(
        self,
        request_id: str,
        on_complete: CompletionCallback,
        task: "asyncio.Task[None]",
    ) -> None:
        # a task cancelled before its first step never enters _run
        if not task.cancelled():
            return
        error = RequestFailedError(message="request cancelled", details={"request_id": request_id})
        self._deliver(request_id, on_complete, CompletionResult(error=error))

    @staticmethod
    def _deliver(request_id: str, on_complete: CompletionCallback, result: CompletionResult) -> None:
        try:
            on_complete(result)
        except Exception:
            LOGGER.exception("Completion callback for request %s raised", request_id)


__all__ = [
    "CompletionCallback",
    "CompletionResult",
    "Messages",
    "RequestHandle",
    "RequestService",
    "RequestServiceProtocol",
    "Transform",
    "build_messages",
]
