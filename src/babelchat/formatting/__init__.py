"""Output formatting hooks applied to responses before insertion."""

from .markdown_to_org import Formatter, formatter_names, get_formatter, identity, markdown_to_org

__all__ = ["Formatter", "formatter_names", "get_formatter", "identity", "markdown_to_org"]
