"""Tests for the asyncio request service."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from babelchat.ai.client import ClientSettings
from babelchat.ai.config import RequestConfig
from babelchat.ai.request_service import CompletionResult, RequestService
from babelchat.context.directive import Directive, Role, Turn
from babelchat.errors import ErrorCode
from babelchat.services.settings import BackendSettings, Settings

from tests.helpers import FakeChatClient, StalledChatClient


class _Factory:
    def __init__(self, **client_kwargs: Any) -> None:
        self.client_kwargs = client_kwargs
        self.clients: list[FakeChatClient] = []

    def __call__(self, settings: ClientSettings) -> FakeChatClient:
        client = FakeChatClient(settings, **self.client_kwargs)
        self.clients.append(client)
        return client


def _settings() -> Settings:
    return Settings(
        api_key="sk-default",
        model="gpt-default",
        backends={"local": BackendSettings(base_url="http://localhost:1234/v1", api_key="", model="llama")},
    )


@pytest.mark.asyncio
async def test_submit_returns_before_callback_runs() -> None:
    factory = _Factory(reply="pong")
    service = RequestService(_settings(), client_factory=factory)
    results: list[CompletionResult] = []
    directive = Directive(system_message="sys", turns=(Turn(Role.USER, "q"), Turn(Role.ASSISTANT, "a")))

    handle = service.submit("ping", directive, RequestConfig(model="gpt-x", temperature=0.2), (), results.append)

    assert results == []
    assert service.pending == 1
    await handle.wait()

    assert results == [CompletionResult(text="pong")]
    assert handle.done
    call = factory.clients[0].calls[0]
    assert call["model"] == "gpt-x"
    assert call["temperature"] == 0.2
    assert call["messages"] == [
        {"role": "system", "content": "sys"},
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": "a"},
        {"role": "user", "content": "ping"},
    ]


@pytest.mark.asyncio
async def test_transforms_are_applied_in_order() -> None:
    factory = _Factory()
    service = RequestService(_settings(), client_factory=factory)

    def _first(messages: list[dict[str, str]]) -> list[dict[str, str]]:
        return [*messages, {"role": "user", "content": "first"}]

    def _second(messages: list[dict[str, str]]) -> list[dict[str, str]]:
        return messages[-1:]

    handle = service.submit("body", Directive(), RequestConfig(model="m"), (_first, _second), lambda _r: None)
    await service.drain()

    assert handle.messages == [{"role": "user", "content": "first"}]
    assert factory.clients[0].calls[0]["messages"] == handle.messages


@pytest.mark.asyncio
async def test_failures_are_reported_as_results() -> None:
    factory = _Factory(error=RuntimeError("upstream exploded"))
    service = RequestService(_settings(), client_factory=factory)
    results: list[CompletionResult] = []

    service.submit("x", Directive(), RequestConfig(model="m"), (), results.append)
    await service.drain()

    (result,) = results
    assert not result.ok
    assert result.error is not None
    assert result.error.error_code == ErrorCode.REQUEST_FAILED
    assert result.error.message == "upstream exploded"


@pytest.mark.asyncio
async def test_callback_exceptions_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    service = RequestService(_settings(), client_factory=_Factory())

    def _explode(_result: CompletionResult) -> None:
        raise RuntimeError("callback bug")

    with caplog.at_level(logging.ERROR):
        service.submit("x", Directive(), RequestConfig(model="m"), (), _explode)
        await service.drain()

    assert "Completion callback" in caplog.text
    assert service.pending == 0


@pytest.mark.asyncio
async def test_backends_get_their_own_client() -> None:
    factory = _Factory()
    service = RequestService(_settings(), client_factory=factory)

    service.submit("a", Directive(), RequestConfig(model="m", backend="local"), (), lambda _r: None)
    service.submit("b", Directive(), RequestConfig(model="m", backend="local"), (), lambda _r: None)
    service.submit("c", Directive(), RequestConfig(model="m"), (), lambda _r: None)
    await service.drain()

    assert sorted(client.settings.base_url for client in factory.clients) == [
        "http://localhost:1234/v1",
        "https://api.openai.com/v1",
    ]
    local = next(client for client in factory.clients if "localhost" in client.settings.base_url)
    assert len(local.calls) == 2

    await service.aclose()
    assert all(client.closed for client in factory.clients)


@pytest.mark.asyncio
async def test_unknown_backend_falls_back_to_default(caplog: pytest.LogCaptureFixture) -> None:
    factory = _Factory()
    service = RequestService(_settings(), client_factory=factory)

    with caplog.at_level(logging.WARNING):
        handle = service.submit("a", Directive(), RequestConfig(model="m", backend="nowhere"), (), lambda _r: None)
    await service.drain()

    assert handle.config.backend == "openai"
    assert "Unknown backend" in caplog.text
    assert factory.clients[0].settings.api_key == "sk-default"


@pytest.mark.asyncio
@pytest.mark.parametrize("started", [True, False])
async def test_cancelled_request_reports_an_error(started: bool) -> None:
    service = RequestService(_settings(), client_factory=StalledChatClient)
    results: list[CompletionResult] = []

    handle = service.submit("x", Directive(), RequestConfig(model="m"), (), results.append)
    if started:
        await asyncio.sleep(0)
    handle.task.cancel()
    await service.drain()

    (result,) = results
    assert result.error is not None
    assert result.error.message == "request cancelled"
    assert service.pending == 0
