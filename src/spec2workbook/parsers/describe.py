"""Line-based parser for mocha/jest style ``describe`` nesting.

This is not a syntax tree. Nesting comes from brace depth where braces are
present and from indentation otherwise, so badly formatted files (mixed tabs
and spaces, several declarations on one line) can be misattributed.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from ..models import StructuralSpan
from ..utils import indent_width
from .base import SpanParser

DECLARATION_PATTERN = re.compile(
    r"""\b(?:describe|context|suite)(?:\.(?:only|skip))?\s*\(\s*"""
    r"""(?P<quote>['"`])(?P<label>(?:\\.|(?!(?P=quote)).)*)(?P=quote)\s*,"""
)
TEST_CASE_PATTERN = re.compile(r"\b(?:it|test|specify)(?:\.(?:only|skip))?\s*\(\s*['\"`]")
HOOK_PATTERN = re.compile(r"^\s*(?:before|after)(?:Each|All)?\s*\(")
_ESCAPE_PATTERN = re.compile(r"\\(.)")


class _BraceCounter:
    """Tracks ``{``/``}`` depth outside strings and comments across lines."""

    def __init__(self):
        self.depth = 0
        self.in_block_comment = False
        self.in_template = False

    @property
    def in_code(self) -> bool:
        return not (self.in_block_comment or self.in_template)

    def scan(self, line: str) -> Iterator[tuple[str, int]]:
        """Yield (brace, depth after it) for each counted brace in the line."""
        quote = None
        i = 0
        n = len(line)
        while i < n:
            ch = line[i]
            if self.in_block_comment:
                if line.startswith("*/", i):
                    self.in_block_comment = False
                    i += 2
                    continue
                i += 1
                continue
            if self.in_template or quote:
                if ch == "\\":
                    i += 2
                    continue
                if self.in_template and ch == "`":
                    self.in_template = False
                elif quote and ch == quote:
                    quote = None
                i += 1
                continue
            if line.startswith("//", i):
                break
            if line.startswith("/*", i):
                self.in_block_comment = True
                i += 2
                continue
            if ch in "'\"":
                quote = ch
            elif ch == "`":
                self.in_template = True
            elif ch == "{":
                self.depth += 1
                yield ch, self.depth
            elif ch == "}":
                self.depth = max(0, self.depth - 1)
                yield ch, self.depth
            i += 1


@dataclass
class _OpenSpan:
    span: StructuralSpan
    open_depth: int
    opened: bool = False


class DescribeBlockParser(SpanParser):
    """Parses ``describe('label', ...)`` declarations into a span tree."""

    def __init__(self, window: int = 10):
        self.window = window

    @property
    def name(self) -> str:
        return "describe"

    def is_test_case(self, line: str) -> bool:
        return bool(TEST_CASE_PATTERN.search(line))

    def is_declaration(self, line: str) -> bool:
        return self._match_label(line) is not None

    def is_hook(self, line: str) -> bool:
        return bool(HOOK_PATTERN.match(line))

    def statement_end(self, lines: list[str], index: int) -> int:
        counter = _BraceCounter()
        opened = False
        for j in range(index, len(lines)):
            for brace, depth in counter.scan(lines[j]):
                if brace == "{":
                    opened = True
                elif opened and depth == 0:
                    return j
            if not opened and lines[j].rstrip().endswith(";"):
                return j
        return len(lines) - 1

    def parse(
        self,
        lines: list[str],
        block_ranges: Iterable[tuple[int, int]] = (),
    ) -> list[StructuralSpan]:
        block_starts_by_end = {end: start for start, end in block_ranges}
        roots: list[StructuralSpan] = []
        stack: list[_OpenSpan] = []
        counter = _BraceCounter()

        for index, line in enumerate(lines):
            lineno = index + 1
            label = self._match_label(line) if counter.in_code else None

            if label is not None:
                indent = indent_width(line)
                while stack and stack[-1].span.indent >= indent:
                    self._close(stack.pop(), lineno - 1)

                span = StructuralSpan(
                    name=label,
                    start_line=lineno,
                    indent=indent,
                    metadata_line=self._find_metadata_line(
                        lines, index, block_starts_by_end
                    ),
                )
                if stack:
                    stack[-1].span.children.append(span)
                else:
                    roots.append(span)
                stack.append(_OpenSpan(span=span, open_depth=counter.depth))

            for brace, depth in counter.scan(line):
                if brace == "{":
                    top = stack[-1] if stack else None
                    if top and not top.opened and depth > top.open_depth:
                        top.opened = True
                    continue
                while stack and (
                    depth < stack[-1].open_depth
                    or (stack[-1].opened and depth <= stack[-1].open_depth)
                ):
                    self._close(stack.pop(), lineno)

        # Anything still open runs to the end of the file
        last_line = len(lines)
        while stack:
            self._close(stack.pop(), last_line)

        return roots

    def _match_label(self, line: str) -> Optional[str]:
        match = DECLARATION_PATTERN.search(line)
        if not match:
            return None
        if "//" in line[:match.start()]:
            return None
        return _ESCAPE_PATTERN.sub(r"\1", match.group("label"))

    def _find_metadata_line(
        self,
        lines: list[str],
        index: int,
        block_starts_by_end: dict[int, int],
    ) -> Optional[int]:
        """Opening line of the metadata block just above a declaration, if any.

        Stops at the first other declaration, test case or hook, so a block
        attaches to the nearest declaration below it and a block that opens
        a span body stays with that span.
        """
        lower = max(index - 1 - self.window, -1)
        for j in range(index - 1, lower, -1):
            if (j + 1) in block_starts_by_end:
                return block_starts_by_end[j + 1]
            line = lines[j]
            if self.is_declaration(line) or self.is_test_case(line) or self.is_hook(line):
                return None
        return None

    @staticmethod
    def _close(entry: _OpenSpan, end_line: int) -> None:
        entry.span.end_line = max(end_line, entry.span.start_line)
