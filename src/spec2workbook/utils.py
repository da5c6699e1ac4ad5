"""Utility functions for spec2workbook."""

import hashlib
import os
import re
from pathlib import Path
from typing import Iterable, Optional

TAB_WIDTH = 4


def indent_width(line: str) -> int:
    """Width of a line's leading whitespace, tabs expanded."""
    expanded = line.expandtabs(TAB_WIDTH)
    return len(expanded) - len(expanded.lstrip())


def generate_id(source_file: str, line: int) -> str:
    """Stable id for an entity that has none, derived from where it was found."""
    digest = hashlib.sha1(f"{source_file}:{line}".encode("utf-8")).hexdigest()
    return f"generated-{digest[:12]}"


def normalize_code(text: Optional[str]) -> str:
    """Collapse whitespace so that re-indented code compares equal."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def relative_posix(path: Path, root: Path) -> str:
    """Path relative to root with forward slashes, or the absolute path if outside."""
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def common_root(paths: Iterable[Path]) -> Path:
    """Deepest directory containing every path."""
    parents = [str(p.resolve().parent) for p in paths]
    if not parents:
        return Path.cwd()
    return Path(os.path.commonpath(parents))


def sanitize_filename(name: str) -> str:
    """Remove characters that are invalid in filenames."""
    name = re.sub(r'[<>:"/\\|?*]', "", name)
    name = name.strip(". ")
    return name or "untitled"
