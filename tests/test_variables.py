"""Tests for variable binding and template expansion."""

from __future__ import annotations

from babelchat.context.directive import Directive, Role, Turn
from babelchat.context.variables import (
    bind_variables,
    expand,
    expand_directive,
    parse_var_header,
    read_literal,
)


def test_expand_substitutes_bare_and_braced_names() -> None:
    assert expand("$a and ${b}", {"a": "X", "b": "Y"}) == "X and Y"


def test_expand_leaves_unknown_names_literal() -> None:
    template = "keep $missing and ${gone} but swap $a"

    assert expand(template, {"a": "1"}) == "keep $missing and ${gone} but swap 1"


def test_expand_renders_non_strings_as_literals() -> None:
    result = expand("n=$n items=${items} flag=$flag", {"n": 3, "items": [1, 2], "flag": None})

    assert result == "n=3 items=[1, 2] flag=None"


def test_expand_is_a_single_pass() -> None:
    assert expand("$a", {"a": "$b", "b": "never"}) == "$b"


def test_expand_accepts_hyphenated_identifiers() -> None:
    assert expand("${first-name} / $first-name", {"first-name": "Ada"}) == "Ada / Ada"


def test_expand_maps_over_lists() -> None:
    assert expand(["$a", "plain", "${a}!"], {"a": "hi"}) == ["hi", "plain", "hi!"]


def test_expand_without_variables_returns_template() -> None:
    assert expand("cost: $5", {}) == "cost: $5"


def test_expand_directive_expands_turns_and_string_system() -> None:
    directive = Directive(
        system_message="You talk to $who.",
        turns=(Turn(Role.USER, "hello $who"), Turn(Role.ASSISTANT, "")),
    )

    expanded = expand_directive(directive, {"who": "Ada"})

    assert expanded.system_message == "You talk to Ada."
    assert [turn.content for turn in expanded.turns] == ["hello Ada", ""]
    assert [turn.role for turn in expanded.turns] == [Role.USER, Role.ASSISTANT]


def test_expand_directive_keeps_missing_system_message() -> None:
    expanded = expand_directive(Directive(turns=(Turn(Role.USER, "$x"),)), {"x": 1})

    assert expanded.system_message is None
    assert expanded.turns[0].content == "1"


def test_bind_variables_last_binding_wins() -> None:
    assert bind_variables([("a", 1), ("b", 2), ("a", 3)]) == {"a": 3, "b": 2}
    assert bind_variables(None) == {}


def test_parse_var_header_reads_literals() -> None:
    pairs = parse_var_header('a=1, b="two, three", c=plain, d=2.5')

    assert pairs == [("a", 1), ("b", "two, three"), ("c", "plain"), ("d", 2.5)]


def test_read_literal_unescapes_quoted_strings() -> None:
    assert read_literal('"say \\"hi\\""') == 'say "hi"'
    assert read_literal('"café"') == "café"
    assert read_literal("-3") == -3
    assert read_literal("word") == "word"
