"""Tests covering the command line entry point."""

from __future__ import annotations

import argparse
import asyncio
import io
import json
from pathlib import Path

import pytest

from babelchat import app
from babelchat.ai.client import AIClient
from babelchat.services.settings import Settings, SettingsStore

from tests.helpers import SESSION_DOCUMENT, FakeRequestService


@pytest.fixture(autouse=True)
def _quiet_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(app, "configure_logging", lambda debug=False, force=False: None)


@pytest.fixture
def org_file(tmp_path: Path) -> Path:
    path = tmp_path / "chat.org"
    path.write_text(SESSION_DOCUMENT, encoding="utf-8")
    return path


def _run_args(path: Path, **overrides: object) -> argparse.Namespace:
    values = {"file": str(path), "line": None, "name": None, "dry_run": False, "no_save": False}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_coerce_cli_overrides_uses_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        ["temperature=0.3", "max_tokens=none", "debug_logging=yes", "model=gpt-x", "max_retries=4"]
    )

    assert overrides == {
        "temperature": 0.3,
        "max_tokens": None,
        "debug_logging": True,
        "model": "gpt-x",
        "max_retries": 4,
    }


@pytest.mark.parametrize("entry", ["novalue", "=x", "unknown=1", "presets={}", "debug_logging=maybe"])
def test_coerce_cli_overrides_rejects_bad_entries(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_main_rejects_bad_override(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    code = app.main(["--settings-path", str(tmp_path / "s.json"), "--set", "nope=1", "dump-settings"])

    assert code == app.EXIT_USAGE
    assert "Invalid --set override" in capsys.readouterr().err


def test_dump_settings_redacts_keys(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"
    SettingsStore(path).save(Settings(api_key="sk-very-secret"))

    code = app.main(["--settings-path", str(path), "--set", "model=gpt-cli", "dump-settings"])

    output = json.loads(capsys.readouterr().out)
    assert code == app.EXIT_OK
    assert output["settings"]["api_key"] == "sk**********et"
    assert output["settings"]["model"] == "gpt-cli"
    assert output["meta"]["cli_overrides"] == ["model"]
    assert output["meta"]["path"] == str(path)


def test_run_dry_run_prints_payload_and_saves(
    org_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = app.main(["--settings-path", str(tmp_path / "s.json"), "run", str(org_file), "--dry-run"])

    payload = json.loads(capsys.readouterr().out)
    assert code == app.EXIT_OK
    assert [message["content"] for message in payload["messages"]] == [
        "Hello, I am $name.",
        "Hi there!",
        "What did I say?",
    ]
    assert "#+begin_example" in org_file.read_text(encoding="utf-8")


def test_run_no_save_leaves_file_untouched(org_file: Path, tmp_path: Path) -> None:
    code = app.main(
        ["--settings-path", str(tmp_path / "s.json"), "run", str(org_file), "--name", "x", "--dry-run", "--no-save"]
    )

    assert code == app.EXIT_USAGE
    code = app.main(
        ["--settings-path", str(tmp_path / "s.json"), "run", str(org_file), "--line", "4", "--dry-run", "--no-save"]
    )

    assert code == app.EXIT_OK
    assert org_file.read_text(encoding="utf-8") == SESSION_DOCUMENT


def test_run_line_outside_block_is_usage_error(
    org_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = app.main(["--settings-path", str(tmp_path / "s.json"), "run", str(org_file), "--line", "1"])

    assert code == app.EXIT_USAGE
    assert "block_not_found" in capsys.readouterr().err


def test_run_missing_file_is_usage_error(tmp_path: Path) -> None:
    code = app.main(["--settings-path", str(tmp_path / "s.json"), "run", str(tmp_path / "missing.org")])

    assert code == app.EXIT_USAGE


def test_run_block_waits_for_answer_and_saves(org_file: Path) -> None:
    service = FakeRequestService(reply="You asked what you said.")

    code = asyncio.run(app._run_block(Settings(), _run_args(org_file), service=service))

    text = org_file.read_text(encoding="utf-8")
    assert code == app.EXIT_OK
    assert text.endswith("#+RESULTS:\n:results:\nYou asked what you said.\n:end:\n")
    assert service.closed is True
    assert [message["content"] for message in service.last.messages] == [
        "Hello, I am $name.",
        "Hi there!",
        "What did I say?",
    ]


def test_run_block_reports_request_failure(org_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    class _FailingService(FakeRequestService):
        async def drain(self) -> None:
            for submission in self.submissions:
                submission.fail("quota exceeded")

    stream = io.StringIO()
    code = asyncio.run(app._run_block(Settings(), _run_args(org_file), service=_FailingService(), stream=stream))

    assert code == app.EXIT_REQUEST_FAILED
    assert "quota exceeded" in capsys.readouterr().err
    assert "[babelchat error] quota exceeded" in org_file.read_text(encoding="utf-8")


def test_models_command_lists_names(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def _fake_list(self: object, *, force_refresh: bool = False) -> list[str]:
        return ["gpt-a", "gpt-b"]

    monkeypatch.setattr(AIClient, "list_models", _fake_list)

    code = asyncio.run(app._list_models(Settings(api_key="sk-test"), None))

    assert code == app.EXIT_OK
    assert capsys.readouterr().out.splitlines() == ["gpt-a", "gpt-b"]


def test_models_command_rejects_unknown_backend(capsys: pytest.CaptureFixture[str]) -> None:
    code = asyncio.run(app._list_models(Settings(api_key="sk-test"), "nowhere"))

    assert code == app.EXIT_USAGE
    assert "nowhere" in capsys.readouterr().err
