"""Character spans over document text."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any


@dataclass(slots=True, frozen=True)
class TextRange:
    """Half-open ``[start, end)`` span of offsets into a document's text.

    Negative offsets collapse to zero and reversed bounds are swapped, so a
    range is always well formed once constructed.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        low, high = sorted((max(0, int(self.start)), max(0, int(self.end))))
        object.__setattr__(self, "start", low)
        object.__setattr__(self, "end", high)

    @classmethod
    def caret(cls, offset: int) -> TextRange:
        return cls(offset, offset)

    @classmethod
    def from_value(cls, value: Any) -> TextRange:
        """Accept a range, a ``{"start", "end"}`` mapping or a ``(start, end)`` pair."""

        if isinstance(value, TextRange):
            return value
        if isinstance(value, Mapping):
            try:
                return cls(value["start"], value["end"])
            except KeyError as exc:
                raise ValueError(f"range mapping is missing {exc.args[0]!r}") from exc
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(value[0], value[1])
        raise TypeError(f"cannot build a TextRange from {type(value).__name__}")

    def contains(self, offset: int) -> bool:
        return self.start <= offset < self.end

    def clamp(self, *, upper: int) -> TextRange:
        """Pull both ends inside ``[0, upper]``."""

        return TextRange(min(self.start, upper), min(self.end, upper))
