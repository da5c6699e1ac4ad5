"""Span parser factory."""

from .base import SpanParser
from .describe import DescribeBlockParser

_PARSERS = {
    "describe": DescribeBlockParser,
}


def get_span_parser(name: str = "describe", window: int = 10) -> SpanParser:
    """Create and return the named span parser."""
    try:
        parser_cls = _PARSERS[name]
    except KeyError:
        raise ValueError(
            f"Unknown span parser: {name}. Use one of: {', '.join(sorted(_PARSERS))}."
        ) from None
    return parser_cls(window=window)


__all__ = ["DescribeBlockParser", "SpanParser", "get_span_parser"]
