"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from babelchat.documents.document_model import OrgDocument
from babelchat.orchestration.orchestrator import RequestOrchestrator
from babelchat.services.settings import Preset, Settings

from tests.helpers import SESSION_DOCUMENT, FakeRequestService


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("BABELCHAT_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BABELCHAT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="sk-test-key",
        model="gpt-test",
        presets={
            "terse": Preset(system="Answer in one line.", model="gpt-terse", temperature=0.1),
        },
    )


@pytest.fixture
def service() -> FakeRequestService:
    return FakeRequestService()


@pytest.fixture
def orchestrator(settings: Settings, service: FakeRequestService) -> RequestOrchestrator:
    return RequestOrchestrator(settings, service)


@pytest.fixture
def session_document() -> OrgDocument:
    return OrgDocument(text=SESSION_DOCUMENT)
