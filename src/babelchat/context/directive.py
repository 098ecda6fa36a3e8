"""Turns, directives and the assembler that flattens them for the request service."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class Role(str, Enum):
    """Speaker of a turn."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(slots=True, frozen=True)
class Turn:
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(slots=True, frozen=True)
class DirectiveElement:
    """One slot of an assembled directive; the system slot may hold ``None``."""

    role: Role
    content: Optional[str]


@dataclass(slots=True, frozen=True)
class Directive:
    """System message plus ordered conversation turns handed to the request service."""

    system_message: Optional[str] = None
    turns: tuple[Turn, ...] = field(default_factory=tuple)

    def with_turns(self, turns: Iterable[Turn]) -> "Directive":
        return Directive(system_message=self.system_message, turns=self.turns + tuple(turns))

    def to_messages(self, body: str | None = None) -> List[Dict[str, str]]:
        """Render OpenAI chat messages, followed by ``body`` as the final user message.

        An empty system slot is left out of the wire payload.
        """

        messages: List[Dict[str, str]] = []
        for element in assemble(self):
            if element.role is Role.SYSTEM:
                if element.content:
                    messages.append({"role": Role.SYSTEM.value, "content": element.content})
                continue
            messages.append({"role": element.role.value, "content": element.content or ""})
        if body is not None:
            messages.append({"role": Role.USER.value, "content": body})
        return messages

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system": self.system_message,
            "turns": [turn.to_dict() for turn in self.turns],
        }


def assemble(directive: Directive) -> list[DirectiveElement]:
    """Flatten ``directive``: the system slot first (always present), then each turn."""

    elements = [DirectiveElement(role=Role.SYSTEM, content=directive.system_message)]
    elements.extend(DirectiveElement(role=turn.role, content=turn.content) for turn in directive.turns)
    return elements


def block_turns(body: str, result: Optional[str]) -> tuple[Turn, Turn]:
    """Return the user/assistant pair for one block.

    A block without a recorded result still yields an assistant turn with empty
    content so the sequence keeps alternating.
    """

    return (
        Turn(role=Role.USER, content=body),
        Turn(role=Role.ASSISTANT, content=result if result is not None else ""),
    )


__all__ = ["Role", "Turn", "DirectiveElement", "Directive", "assemble", "block_turns"]
