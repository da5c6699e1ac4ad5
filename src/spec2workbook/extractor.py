"""Comment-embedded metadata block extraction.

Blocks look like::

    /* @apicize-request-metadata
    {"id": "r1", "name": "Get User", "url": "...", "method": "GET"}
    @apicize-request-metadata-end */

The ``apicize-`` prefix is optional. Extraction is purely textual: the JSON
payload is parsed but none of its fields are looked at.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from .exceptions import (
    IncompleteMetadataBlockError,
    InvalidMetadataJsonError,
    ReconstructionError,
)
from .models import BlockKind, MetadataBlock

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(
    r"@(?:apicize-)?(request|group|file)-metadata(-end)?(?![\w-])"
)


@dataclass
class ExtractionResult:
    """Blocks found in one file plus the per-block failures."""

    blocks: list[MetadataBlock] = field(default_factory=list)
    errors: list[ReconstructionError] = field(default_factory=list)
    # (opening line, closing line) of every closed block, valid JSON or not
    ranges: list[tuple[int, int]] = field(default_factory=list)

    @property
    def entity_blocks(self) -> list[MetadataBlock]:
        return [b for b in self.blocks if b.kind != BlockKind.FILE]

    @property
    def file_blocks(self) -> list[MetadataBlock]:
        return [b for b in self.blocks if b.kind == BlockKind.FILE]


@dataclass
class _OpenBlock:
    kind: BlockKind
    line: int
    parts: list[str] = field(default_factory=list)


def _clean_segment(segment: str) -> str:
    """Strip comment delimiters and continuation prefixes from a payload line."""
    text = segment.strip()
    if text.startswith("/*"):
        text = text[2:]
    elif text.startswith("*") and not text.startswith("*/"):
        text = text[1:]
    if text.endswith("*/"):
        text = text[:-2]
    return text.strip()


def extract_blocks(lines: list[str], source_file: str = "") -> ExtractionResult:
    """Find every metadata block in a file's lines.

    Failures are collected on the result, never raised:

    - ``IncompleteMetadataBlockError`` when the file ends before the closing
      marker, or when another opening marker appears first (blocks cannot
      nest; scanning resumes at the inner marker).
    - ``InvalidMetadataJsonError`` when the assembled payload is not JSON.
    """
    result = ExtractionResult()
    current: Optional[_OpenBlock] = None

    for lineno, line in enumerate(lines, start=1):
        pos = 0
        for match in MARKER_PATTERN.finditer(line):
            kind = BlockKind(match.group(1))
            is_end = match.group(2) is not None

            if current is None:
                if is_end:
                    logger.debug("%s:%d: stray %s end marker", source_file, lineno, kind.value)
                    pos = match.end()
                    continue
                current = _OpenBlock(kind=kind, line=lineno)
                pos = match.end()
                continue

            if not is_end:
                result.errors.append(IncompleteMetadataBlockError(
                    f"Metadata block starting at line {current.line} is not closed "
                    f"before the next block at line {lineno}",
                    file=source_file,
                    line=current.line,
                ))
                current = _OpenBlock(kind=kind, line=lineno)
                pos = match.end()
                continue

            if kind != current.kind:
                result.errors.append(IncompleteMetadataBlockError(
                    f"{current.kind.value.capitalize()} metadata block starting at line "
                    f"{current.line} is closed by a {kind.value} end marker",
                    file=source_file,
                    line=current.line,
                ))
                current = None
                pos = match.end()
                continue

            current.parts.append(line[pos:match.start()])
            _finish_block(current, lineno, source_file, result)
            current = None
            pos = match.end()

        if current is not None:
            current.parts.append(line[pos:])

    if current is not None:
        result.errors.append(IncompleteMetadataBlockError(
            f"Incomplete metadata block starting at line {current.line}",
            file=source_file,
            line=current.line,
        ))

    return result


def _finish_block(
    block: _OpenBlock, end_line: int, source_file: str, result: ExtractionResult
) -> None:
    result.ranges.append((block.line, end_line))
    content = "\n".join(
        cleaned for cleaned in (_clean_segment(p) for p in block.parts) if cleaned
    )
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as e:
        result.errors.append(InvalidMetadataJsonError(
            f"Invalid JSON in {block.kind.value} metadata block at line {block.line}: {e.msg}",
            file=source_file,
            line=block.line,
            detail=str(e),
        ))
        return

    result.blocks.append(MetadataBlock(
        kind=block.kind,
        payload=payload,
        line=block.line,
        end_line=end_line,
        source_file=source_file,
    ))


def extract_from_text(text: str, source_file: str = "") -> ExtractionResult:
    """Convenience wrapper over ``extract_blocks`` for raw file text."""
    return extract_blocks(text.splitlines(), source_file)
