"""Chat-completion client for OpenAI-compatible backends."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..services.settings import BackendSettings, Settings

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ClientSettings:
    """Connection and retry knobs for a single backend."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    metadata: Mapping[str, str] | None = None
    debug_logging: bool = False

    @classmethod
    def for_backend(cls, settings: Settings, backend: BackendSettings) -> "ClientSettings":
        return cls(
            base_url=backend.base_url,
            api_key=backend.api_key,
            model=backend.model or settings.model,
            organization=backend.organization,
            request_timeout=settings.request_timeout,
            max_retries=settings.max_retries,
            retry_min_seconds=settings.retry_min_seconds,
            retry_max_seconds=settings.retry_max_seconds,
            default_headers=settings.default_headers or None,
            metadata={str(k): str(v) for k, v in (settings.metadata or {}).items()} or None,
            debug_logging=settings.debug_logging,
        )


# Transport failures worth another attempt; anything else surfaces immediately.
_RETRYABLE: tuple[type[BaseException], ...] = (
    APIError,
    APIStatusError,
    APIConnectionError,
    RateLimitError,
    httpx.TimeoutException,
)


def _answer_text(response: Any) -> str:
    """Pull the first choice's content, falling back to a refusal string."""

    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if content is not None:
        return str(content)
    return str(getattr(message, "refusal", None) or "")


class AIClient:
    """One OpenAI-compatible endpoint, answering chat blocks with retries."""

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings
        self._client = client or AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=dict(settings.default_headers) if settings.default_headers else None,
        )
        self._models: List[str] | None = None
        self._models_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def complete_chat(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        metadata: Mapping[str, str] | None = None,
        **extra_params: Any,
    ) -> str:
        """Send ``messages`` as a single non-streaming completion and return the reply text.

        ``None`` knobs are left out of the request so the endpoint applies its
        own defaults. Retryable transport errors are attempted up to
        ``max_retries`` times with exponential backoff before the last one is
        re-raised.
        """

        payload = self._payload(messages, model, temperature, max_tokens, metadata, extra_params)
        LOGGER.debug("Chat completion via %s with %d message(s)", payload["model"], len(payload["messages"]))
        if self._settings.debug_logging:
            LOGGER.debug("Request payload:\n%s", json.dumps(payload, ensure_ascii=False, indent=2, default=str))

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(_RETRYABLE),
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.chat.completions.create(**payload)
        return _answer_text(response)

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model ids the endpoint advertises, cached after the first call."""

        async with self._models_lock:
            if self._models is None or force_refresh:
                response = await self._client.models.list()
                self._models = [item.id for item in response.data if getattr(item, "id", None)]
            return list(self._models)

    async def aclose(self) -> None:
        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result

    def _payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
        metadata: Mapping[str, str] | None,
        extra_params: Mapping[str, Any],
    ) -> Dict[str, Any]:
        turns = [dict(message) for message in messages]
        if not turns:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {"model": model or self._settings.model, "messages": turns, "stream": False}
        tags = {**(self._settings.metadata or {}), **(metadata or {})}
        if tags:
            payload["metadata"] = tags
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        payload.update(extra_params)
        return payload


__all__ = ["AIClient", "ClientSettings"]
