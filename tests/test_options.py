"""Tests for invocation option parsing."""

from __future__ import annotations

import pytest

from babelchat.errors import ErrorCode, InvalidOptionsError
from babelchat.orchestration.options import InvocationOptions, normalize_flag


@pytest.mark.parametrize(
    "value",
    [None, False, "", "nil", "NO", "false", "0", "Off", " off ", 0],
)
def test_false_like_flags(value: object) -> None:
    assert normalize_flag(value) is False


@pytest.mark.parametrize("value", [True, "yes", "t", "1", "anything", 1, []])
def test_true_like_flags(value: object) -> None:
    assert normalize_flag(value) is True


def test_parse_coerces_header_strings() -> None:
    options = InvocationOptions.parse(
        {
            "model": "gpt-x",
            "temperature": "0.25",
            "max_tokens": "128",
            "dry_run": "no",
            "context": "notes, glossary.txt, notes",
            "history": "yes",
            "session": "  s1 ",
            "system": "",
            "variables": [("a", 1), ("a", 2)],
        }
    )

    assert options.model == "gpt-x"
    assert options.temperature == 0.25
    assert options.max_tokens == 128
    assert options.dry_run is False
    assert options.context == ("notes", "glossary.txt")
    assert options.history is True
    assert options.session == "s1"
    assert options.system is None
    assert options.variables == {"a": 2}


def test_parse_treats_nil_numbers_as_unset() -> None:
    options = InvocationOptions.parse({"temperature": "nil", "max_tokens": ""})

    assert options.temperature is None
    assert options.max_tokens is None


def test_parse_ignores_unknown_keys() -> None:
    options = InvocationOptions.parse({"results": "raw", "exports": "both"})

    assert options == InvocationOptions()


def test_parse_returns_existing_options_unchanged() -> None:
    options = InvocationOptions(model="m")

    assert InvocationOptions.parse(options) is options


def test_parse_collects_every_problem() -> None:
    with pytest.raises(InvalidOptionsError) as excinfo:
        InvocationOptions.parse({"temperature": "hot", "max_tokens": "many", "variables": 5})

    error = excinfo.value
    assert error.error_code == ErrorCode.INVALID_OPTIONS
    assert len(error.problems) == 3
    assert any(problem.startswith("variables") for problem in error.problems)
    assert error.to_dict()["problems"] == error.problems
