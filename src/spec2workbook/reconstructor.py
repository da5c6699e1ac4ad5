"""Rebuilds the request/group tree of one file.

Metadata blocks say *what* each entity is; the span tree says *where* it
sits. A span with a request block becomes a request, a span with a group
block becomes a group of its child spans, and a span with children but no
metadata becomes an inferred group. Leaf spans without metadata are plain
test cases and are dropped.
"""

import logging
import textwrap
from dataclasses import dataclass, field
from typing import Optional

from .builder import EntityBuilder
from .exceptions import ReconstructionError
from .extractor import ExtractionResult, extract_blocks
from .models import (
    ImportWarning,
    MetadataBlock,
    ReconstructedRequest,
    ReconstructedRequestGroup,
    SourceLocation,
    StructuralSpan,
    WarningCategory,
    WarningCode,
    WorkbookItem,
)
from .parsers import SpanParser, get_span_parser
from .utils import generate_id, normalize_code

logger = logging.getLogger(__name__)


@dataclass
class FileReconstruction:
    """Everything recovered from a single file."""

    source_file: str
    items: list[WorkbookItem] = field(default_factory=list)
    warnings: list[ImportWarning] = field(default_factory=list)
    errors: list[ReconstructionError] = field(default_factory=list)
    file_metadata: list[dict] = field(default_factory=list)
    block_count: int = 0

    @property
    def has_metadata(self) -> bool:
        return self.block_count > 0


def _walk(spans: list[StructuralSpan]):
    for span in spans:
        yield span
        yield from _walk(span.children)


class HierarchyReconstructor:
    """Combines extracted metadata blocks with a file's span tree."""

    def __init__(
        self,
        builder: Optional[EntityBuilder] = None,
        parser: Optional[SpanParser] = None,
    ):
        self.builder = builder or EntityBuilder()
        self.parser = parser or get_span_parser()

    def reconstruct(self, lines: list[str], source_file: str) -> FileReconstruction:
        """Extract, parse and assemble one file's entities.

        Per-block failures are collected on the result rather than raised.
        """
        extraction = extract_blocks(lines, source_file)
        spans = self.parser.parse(lines, extraction.ranges)
        return self.assemble(lines, source_file, extraction, spans)

    def assemble(
        self,
        lines: list[str],
        source_file: str,
        extraction: ExtractionResult,
        spans: list[StructuralSpan],
    ) -> FileReconstruction:
        result = FileReconstruction(
            source_file=source_file,
            errors=list(extraction.errors),
            file_metadata=[
                b.payload for b in extraction.file_blocks if isinstance(b.payload, dict)
            ],
            block_count=len(extraction.ranges),
        )
        context = _FileContext(
            lines=lines,
            source_file=source_file,
            blocks={b.line: b for b in extraction.entity_blocks},
            ranges=list(extraction.ranges),
            result=result,
        )

        attached = {s.metadata_line for s in _walk(spans) if s.metadata_line is not None}
        orphans = [b for b in extraction.entity_blocks if b.line not in attached]
        orphans = self._bind_late(context, spans, orphans)

        for block in orphans:
            owner = _innermost_enclosing(spans, block.line)
            context.orphans.setdefault(id(owner) if owner else None, []).append(block)
            result.warnings.append(ImportWarning(
                file=source_file,
                line=block.line,
                message=f"{block.kind.value.capitalize()} metadata is not attached to any "
                        "declaration; kept at its enclosing level",
                category=WarningCategory.STRUCTURE,
                code=WarningCode.ORPHANED_METADATA,
            ))

        placed = self._build_level(context, spans, owner=None)
        result.items = [item for _, item in placed]
        result.errors.sort(key=lambda e: e.line or 0)
        logger.debug(
            "%s: %d block(s), %d top-level item(s), %d error(s)",
            source_file, result.block_count, len(result.items), len(result.errors),
        )
        return result

    def _bind_late(
        self,
        context: "_FileContext",
        spans: list[StructuralSpan],
        orphans: list[MetadataBlock],
    ) -> list[MetadataBlock]:
        """Attach blocks the parser's look-back did not claim.

        A block that opens a span body (no declaration, test case, hook or
        other block between the declaration and the block) belongs to that
        span when it has no metadata of its own. Otherwise it binds forward
        to the first declaration after it when that declaration has no
        metadata, shares the block's enclosing span and no test case or hook
        comes in between.
        """
        ordered = sorted(_walk(spans), key=lambda s: s.start_line)
        remaining = []
        for block in orphans:
            enclosing = _innermost_enclosing(spans, block.line)
            if enclosing is not None and self._opens_body(context, enclosing, block):
                logger.debug(
                    "%s: binding block at line %d to enclosing declaration at line %d",
                    context.source_file, block.line, enclosing.start_line,
                )
                enclosing.metadata_line = block.line
                continue

            candidate = next((s for s in ordered if s.start_line > block.end_line), None)
            if candidate is None or candidate.metadata_line is not None:
                remaining.append(block)
                continue
            between = context.lines[block.end_line:candidate.start_line - 1]
            if any(self.parser.is_test_case(line) or self.parser.is_hook(line) for line in between):
                remaining.append(block)
                continue
            if _innermost_enclosing(spans, block.line) is not _parent_of(spans, candidate):
                remaining.append(block)
                continue
            logger.debug(
                "%s: binding block at line %d to declaration at line %d",
                context.source_file, block.line, candidate.start_line,
            )
            candidate.metadata_line = block.line
        return remaining

    def _opens_body(
        self, context: "_FileContext", span: StructuralSpan, block: MetadataBlock
    ) -> bool:
        if span.metadata_line is not None:
            return False
        if any(child.start_line < block.line for child in span.children):
            return False
        before = context.lines[span.start_line:block.line - 1]
        return not any(
            self.parser.is_test_case(line)
            or self.parser.is_hook(line)
            or self.parser.is_declaration(line)
            or _in_ranges(context.ranges, span.start_line + 1 + i)
            for i, line in enumerate(before)
        )

    def _build_level(
        self,
        context: "_FileContext",
        spans: list[StructuralSpan],
        owner: Optional[StructuralSpan],
    ) -> list[tuple[int, WorkbookItem]]:
        placed: list[tuple[int, WorkbookItem]] = []
        for span in spans:
            placed.extend(self._build_span(context, span))
        for block in context.orphans.get(id(owner) if owner else None, []):
            entity = self._build_block(context, block)
            if entity is not None:
                placed.append((block.line, entity))
        placed.sort(key=lambda pair: pair[0])
        return placed

    def _build_span(
        self, context: "_FileContext", span: StructuralSpan
    ) -> list[tuple[int, WorkbookItem]]:
        block = context.blocks.get(span.metadata_line) if span.metadata_line else None
        entity = self._build_block(context, block) if block else None
        children = self._build_level(context, span.children, owner=span)

        if isinstance(entity, ReconstructedRequest):
            self._check_name(context, span, entity)
            self._recover_test_code(context, span, entity)
            if children:
                context.result.warnings.append(ImportWarning(
                    file=context.source_file,
                    line=span.start_line,
                    message=f'Request "{entity.name}" contains {len(children)} nested '
                            "item(s); they were moved up to its parent",
                    category=WarningCategory.STRUCTURE,
                    code=WarningCode.REQUEST_HAS_CHILDREN,
                ))
            return [(span.start_line, entity)] + children

        if isinstance(entity, ReconstructedRequestGroup):
            self._check_name(context, span, entity)
            entity.children = [item for _, item in children]
            return [(span.start_line, entity)]

        if children:
            group = ReconstructedRequestGroup(
                id=generate_id(context.source_file, span.start_line),
                name=span.name,
                source=SourceLocation(file=context.source_file, line=span.start_line),
                children=[item for _, item in children],
                inferred=True,
            )
            return [(span.start_line, group)]

        return []

    def _build_block(
        self, context: "_FileContext", block: MetadataBlock
    ) -> Optional[WorkbookItem]:
        try:
            outcome = self.builder.build(block)
        except ReconstructionError as e:
            context.result.errors.append(e)
            return None
        context.result.warnings.extend(outcome.warnings)
        return outcome.entity

    @staticmethod
    def _check_name(context: "_FileContext", span: StructuralSpan, entity: WorkbookItem) -> None:
        if span.name != entity.name:
            context.result.warnings.append(ImportWarning(
                file=context.source_file,
                line=span.start_line,
                message=f'Declaration label "{span.name}" differs from metadata name '
                        f'"{entity.name}"; keeping the metadata name',
                category=WarningCategory.METADATA,
                code=WarningCode.NAME_MISMATCH,
            ))

    def _recover_test_code(
        self, context: "_FileContext", span: StructuralSpan, request: ReconstructedRequest
    ) -> None:
        body = self._span_test_code(context, span)
        if body is None:
            return
        if request.test is not None:
            expected = normalize_code(request.test)
            if expected in (normalize_code(body), normalize_code(_unwrap_test_case(body))):
                return
            context.result.warnings.append(ImportWarning(
                file=context.source_file,
                line=span.start_line,
                message=f'Test code of "{request.name}" was edited; using the code from the file',
                category=WarningCategory.METADATA,
                code=WarningCode.TEST_CODE_DRIFT,
            ))
        request.test = body

    def _span_test_code(self, context: "_FileContext", span: StructuralSpan) -> Optional[str]:
        """Span body after its metadata and hooks, dedented, or None if empty.

        Everything from the first statement after the hooks to the span close
        is test code, nested ``describe`` blocks without metadata included.
        """
        lines = context.lines
        stop = span.end_line
        if stop > span.start_line and lines[stop - 1].lstrip().startswith("}"):
            stop -= 1
        for child in span.children:
            if _carries_metadata(child):
                stop = min(stop, (child.metadata_line or child.start_line) - 1)

        index = span.start_line
        start = None
        while index < stop:
            line = lines[index]
            stripped = line.strip()
            if _in_ranges(context.ranges, index + 1):
                start = None
            elif self.parser.is_hook(line):
                index = self.parser.statement_end(lines, index)
                start = None
            elif stripped.startswith(("//", "/*", "*")):
                if start is None:
                    start = index
            elif stripped:
                code = textwrap.dedent("\n".join(lines[index if start is None else start:stop]))
                return code.strip() or None
            index += 1
        return None


@dataclass
class _FileContext:
    lines: list[str]
    source_file: str
    blocks: dict[int, MetadataBlock]
    ranges: list[tuple[int, int]]
    result: FileReconstruction
    orphans: dict[Optional[int], list[MetadataBlock]] = field(default_factory=dict)


def _innermost_enclosing(
    spans: list[StructuralSpan], line: int
) -> Optional[StructuralSpan]:
    for span in spans:
        if span.encloses(line):
            return _innermost_enclosing(span.children, line) or span
    return None


def _parent_of(
    spans: list[StructuralSpan], target: StructuralSpan
) -> Optional[StructuralSpan]:
    for span in spans:
        if any(child is target for child in span.children):
            return span
        found = _parent_of(span.children, target)
        if found is not None:
            return found
    return None


def _unwrap_test_case(code: str) -> str:
    """Inner body of code that is one ``it(..., () => { ... });`` wrapper."""
    lines = code.splitlines()
    if len(lines) < 2 or lines[-1].strip() not in ("});", "})"):
        return code
    return textwrap.dedent("\n".join(lines[1:-1])).strip()


def _carries_metadata(span: StructuralSpan) -> bool:
    return span.metadata_line is not None or any(_carries_metadata(c) for c in span.children)


def _in_ranges(ranges: list[tuple[int, int]], line: int) -> bool:
    return any(start <= line <= end for start, end in ranges)
