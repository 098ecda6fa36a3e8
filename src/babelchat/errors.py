"""Error hierarchy shared by babelchat components.

Errors serialize to a consistent dictionary shape so the CLI and the
completion callback can render them the same way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Constants for machine-readable error identifiers."""

    INVALID_OPTIONS = "invalid_options"
    BLOCK_NOT_FOUND = "block_not_found"
    REQUEST_FAILED = "request_failed"
    INTERNAL_ERROR = "internal_error"


@dataclass
class BabelChatError(Exception):
    """Base exception for babelchat failures.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


@dataclass
class InvalidOptionsError(BabelChatError):
    """Raised when invocation options fail validation."""

    error_code: str = field(default=ErrorCode.INVALID_OPTIONS)
    message: str = field(default="Invocation options are invalid")
    details: dict[str, Any] = field(default_factory=dict)

    problems: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.problems:
            result["problems"] = list(self.problems)
        return result


@dataclass
class BlockNotFoundError(BabelChatError):
    """Raised when no chat block exists at the requested point."""

    error_code: str = field(default=ErrorCode.BLOCK_NOT_FOUND)
    message: str = field(default="No chat block found at the requested location")
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class RequestFailedError(BabelChatError):
    """Wraps a transport or API failure reported to a completion callback."""

    error_code: str = field(default=ErrorCode.REQUEST_FAILED)
    message: str = field(default="The chat request failed")
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "RequestFailedError":
        if isinstance(exc, RequestFailedError):
            return exc
        text = str(exc).strip() or type(exc).__name__
        return cls(message=text, details={"exception": type(exc).__name__})


__all__ = [
    "ErrorCode",
    "BabelChatError",
    "InvalidOptionsError",
    "BlockNotFoundError",
    "RequestFailedError",
]
