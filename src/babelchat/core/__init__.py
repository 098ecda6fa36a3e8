"""Core value types shared across babelchat packages."""

from .ranges import TextRange

__all__ = ["TextRange"]
