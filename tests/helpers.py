"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence

from babelchat.ai.config import RequestConfig
from babelchat.ai.request_service import CompletionResult, build_messages
from babelchat.context.directive import Directive
from babelchat.errors import RequestFailedError

SESSION_DOCUMENT = """#+title: demo

#+begin_src babelchat :session s1
Hello, I am $name.
#+end_src

#+RESULTS:
: Hi there!

#+begin_src babelchat :session s2
Unrelated question
#+end_src

#+begin_src babelchat :session s1
What did I say?
#+end_src
"""


@dataclass
class Submission:
    """One call recorded by :class:`FakeRequestService`."""

    body: str
    directive: Directive
    config: RequestConfig
    transforms: tuple[Any, ...]
    on_complete: Callable[[CompletionResult], None]
    delivered: bool = False

    @property
    def messages(self) -> list[dict[str, str]]:
        return build_messages(self.body, self.directive, self.transforms)

    def complete(self, text: str) -> None:
        self.delivered = True
        self.on_complete(CompletionResult(text=text))

    def fail(self, message: str) -> None:
        self.delivered = True
        self.on_complete(CompletionResult(error=RequestFailedError(message=message)))


@dataclass
class FakeRequestService:
    """Request service stub: records submissions, completes them on demand."""

    reply: str = "stub reply"
    submissions: list[Submission] = field(default_factory=list)
    closed: bool = False

    def submit(
        self,
        body: str,
        directive: Directive,
        config: RequestConfig,
        transforms: Sequence[Any],
        on_complete: Callable[[CompletionResult], None],
    ) -> Submission:
        submission = Submission(body, directive, config, tuple(transforms), on_complete)
        self.submissions.append(submission)
        return submission

    @property
    def last(self) -> Submission:
        return self.submissions[-1]

    async def drain(self) -> None:
        for submission in self.submissions:
            if not submission.delivered:
                submission.complete(self.reply)

    async def aclose(self) -> None:
        self.closed = True


class FakeChatClient:
    """Stands in for :class:`babelchat.ai.client.AIClient` inside the request service."""

    def __init__(self, settings: Any, *, reply: str = "pong", error: Exception | None = None) -> None:
        self.settings = settings
        self.reply = reply
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def complete_chat(self, messages: Any, **kwargs: Any) -> str:
        self.calls.append({"messages": list(messages), **kwargs})
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self) -> None:
        self.closed = True


class StalledChatClient(FakeChatClient):
    """Chat client whose requests never finish until their task is cancelled."""

    async def complete_chat(self, messages: Any, **kwargs: Any) -> str:
        self.calls.append({"messages": list(messages), **kwargs})
        await asyncio.Event().wait()
        return self.reply
