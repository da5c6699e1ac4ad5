"""Abstract base class for structural span parsers."""

from abc import ABC, abstractmethod
from typing import Iterable

from ..models import StructuralSpan


class SpanParser(ABC):
    """Recovers the nesting of block declarations from source text.

    Implementations may be line heuristics or a real language parser; the
    reconstructor only relies on the span tree they return.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used by ``get_span_parser``."""

    @abstractmethod
    def parse(
        self,
        lines: list[str],
        block_ranges: Iterable[tuple[int, int]] = (),
    ) -> list[StructuralSpan]:
        """Parse lines into a forest of spans in declaration order.

        Args:
            lines: File content split into lines.
            block_ranges: (opening line, closing line) of each metadata block,
                1-based. Used to fill ``StructuralSpan.metadata_line``.

        Every returned span has ``end_line`` resolved.
        """

    @abstractmethod
    def is_test_case(self, line: str) -> bool:
        """Whether the line opens a plain test case (not a span)."""

    @abstractmethod
    def is_declaration(self, line: str) -> bool:
        """Whether the line declares a span."""

    @abstractmethod
    def is_hook(self, line: str) -> bool:
        """Whether the line opens a setup/teardown hook such as ``beforeEach``."""

    @abstractmethod
    def statement_end(self, lines: list[str], index: int) -> int:
        """0-based index of the line that closes the statement opened at ``index``."""
