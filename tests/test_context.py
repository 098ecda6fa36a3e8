"""Tests for block indexing, session/prompt resolution and turn assembly."""

from __future__ import annotations

from babelchat.context.directive import Directive, Role, Turn, assemble
from babelchat.context.indexer import index_all, index_blocks
from babelchat.context.resolver import find_history, find_prompt, find_session
from babelchat.documents.document_model import OrgDocument

CONVERSATION = """#+begin_src babelchat :session s1
one
#+end_src

#+RESULTS:
: first answer

#+begin_src babelchat :session s1
two
#+end_src

#+begin_src python :session s1
print("not chat")
#+end_src

#+begin_src babelchat :session s1
three
#+end_src

#+RESULTS:
:results:
third answer
:end:

#+begin_src babelchat :session s1
four
#+end_src
"""


def _assert_alternates(turns: tuple[Turn, ...]) -> None:
    assert len(turns) % 2 == 0
    for index, turn in enumerate(turns):
        assert turn.role is (Role.USER if index % 2 == 0 else Role.ASSISTANT)


def test_index_blocks_excludes_block_at_cutoff() -> None:
    document = OrgDocument(text=CONVERSATION)
    last = document.scan_elements()[-1]

    blocks = index_blocks(document, last.location)

    assert [block.body for block in blocks] == ["one", "two", 'print("not chat")', "three"]
    assert all(block.location < last.location for block in blocks)


def test_index_blocks_filters_session_and_language() -> None:
    document = OrgDocument(text=CONVERSATION)

    assert index_blocks(document, None, session="s2") == []
    chat = index_blocks(document, None, session="s1", language="babelchat")
    assert [block.body for block in chat] == ["one", "two", "three", "four"]
    assert [block.result for block in chat] == ["first answer", None, "third answer", None]
    assert chat[0].session == "s1"


def test_index_blocks_ignores_edits_after_scan() -> None:
    document = OrgDocument(text=CONVERSATION)
    snapshot = index_all(document)

    document.replace_text(document.find_first("one"), "ONE")

    assert snapshot[0].body == "one"
    assert index_all(document)[0].body == "ONE"


def test_find_session_alternates_with_empty_assistant_turns() -> None:
    document = OrgDocument(text=CONVERSATION)
    last = document.scan_elements()[-1]

    directive = find_session(document, "s1", "be brief", upper_bound=last.location)

    _assert_alternates(directive.turns)
    assert directive.system_message == "be brief"
    assert [turn.content for turn in directive.turns] == [
        "one",
        "first answer",
        "two",
        "",
        'print("not chat")',
        "",
        "three",
        "third answer",
    ]


def test_find_session_visibility_cutoff() -> None:
    document = OrgDocument(text=CONVERSATION)
    second = document.scan_elements()[1]

    directive = find_session(document, "s1", upper_bound=second.location)

    assert [turn.content for turn in directive.turns] == ["one", "first answer"]


def test_find_session_without_matches_is_system_only() -> None:
    document = OrgDocument(text=CONVERSATION)

    directive = find_session(document, "nobody", "sys")

    assert directive == Directive(system_message="sys")


def test_find_history_uses_language_not_session() -> None:
    text = CONVERSATION.replace(":session s1\ntwo", ":session other\ntwo")
    document = OrgDocument(text=text)
    last = document.scan_elements()[-1]

    directive = find_history(document, upper_bound=last.location, language="babelchat")

    _assert_alternates(directive.turns)
    assert [turn.content for turn in directive.turns if turn.role is Role.USER] == ["one", "two", "three"]


def test_find_prompt_uses_first_named_block_anywhere() -> None:
    text = (
        "#+begin_src babelchat\nbefore\n#+end_src\n\n"
        "#+name: style\n#+begin_src babelchat\nWrite like a pirate.\n#+end_src\n\n"
        "#+RESULTS:\n: Arr.\n\n"
        "#+name: style\n#+begin_src babelchat\nshadowed\n#+end_src\n"
    )
    document = OrgDocument(text=text)

    directive = find_prompt(document, "style", "sys")

    assert directive.system_message == "sys"
    assert directive.turns == (
        Turn(Role.USER, "Write like a pirate."),
        Turn(Role.ASSISTANT, "Arr."),
    )


def test_find_prompt_missing_name_is_system_only() -> None:
    document = OrgDocument(text=CONVERSATION)

    assert find_prompt(document, "absent", "sys") == Directive(system_message="sys")


def test_assemble_places_system_slot_first() -> None:
    directive = Directive(turns=(Turn(Role.USER, "q"), Turn(Role.ASSISTANT, "a")))

    elements = assemble(directive)

    assert [element.role for element in elements] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
    assert elements[0].content is None


def test_to_messages_omits_empty_system_and_appends_body() -> None:
    directive = Directive(turns=(Turn(Role.USER, "q"), Turn(Role.ASSISTANT, "")))

    assert directive.to_messages("next") == [
        {"role": "user", "content": "q"},
        {"role": "assistant", "content": ""},
        {"role": "user", "content": "next"},
    ]
    with_system = Directive(system_message="sys").to_messages("hi")
    assert with_system == [{"role": "system", "content": "sys"}, {"role": "user", "content": "hi"}]
