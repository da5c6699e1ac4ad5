"""Project scanner for generated test projects.

Walks a project directory, picks out the test files the exporter writes
(``*.spec.ts`` / ``*.test.ts`` by default), classifies each one as the entry
file, a suite file or something else, and records which scanned files import
which. No file content is parsed structurally here.
"""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .config import ImportOptions
from .exceptions import PathNotFoundError, ProjectNotADirectoryError
from .models import (
    FileRole,
    ImportStage,
    ImportWarning,
    ProjectMap,
    ScannedFile,
    WarningCategory,
    WarningCode,
)
from .utils import common_root, relative_posix

logger = logging.getLogger(__name__)

ENTRY_FILE_NAMES = {"index.spec.ts", "index.test.ts"}
SUITE_DIR_NAMES = {"suites", "suite"}

IMPORT_PATTERN = re.compile(
    r"""(?:\bimport\s+(?:[^'"`;]*?\s+from\s+)?|\brequire\s*\(\s*)['"`]([^'"`]+)['"`]"""
)
_RESOLVE_SUFFIXES = ("", ".ts", ".spec.ts", ".test.ts", "/index.ts", "/index.spec.ts")


class ProjectScanner:
    """Finds and classifies the test files of a generated project."""

    # Directory names never descended into
    IGNORED_DIRS = {
        "node_modules", "dist", "build", "coverage", "__pycache__",
        ".git", ".idea", ".vscode",
    }

    # Suffixes excluded even when they match an include suffix
    EXCLUDED_SUFFIXES = (".d.ts",)

    def __init__(self, options: Optional[ImportOptions] = None):
        self.options = options or ImportOptions()

    def scan(self, root: Path) -> ProjectMap:
        """Scan a project directory and build its map.

        Raises:
            PathNotFoundError: root does not exist.
            ProjectNotADirectoryError: root is not a directory.
        """
        root = Path(root)
        if not root.exists():
            raise PathNotFoundError(
                f"Project path does not exist: {root}", stage=ImportStage.SCANNING
            )
        if not root.is_dir():
            raise ProjectNotADirectoryError(
                f"Project path is not a directory: {root}", stage=ImportStage.SCANNING
            )
        root = root.resolve()

        project = ProjectMap(root=root)
        seen: set[Path] = set()

        def on_walk_error(error: OSError) -> None:
            target = error.filename or str(root)
            logger.warning("Skipping unreadable directory %s: %s", target, error)
            project.warnings.append(ImportWarning(
                file=str(target),
                message=f"Unreadable directory skipped: {error.strerror or error}",
                category=WarningCategory.STRUCTURE,
                code=WarningCode.UNREADABLE_DIRECTORY,
            ))

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_walk_error):
            # Modifying dirnames in place stops os.walk from descending
            dirnames[:] = sorted(d for d in dirnames if not self._ignore_dir(d))
            for filename in sorted(filenames):
                if not self._is_test_file(filename):
                    continue
                scanned = self._stat_file(Path(dirpath) / filename, root, project)
                if scanned is None:
                    continue
                resolved = scanned.path.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                project.files.append(scanned)

        project.files.sort(key=lambda f: f.relative_path)
        project.dependencies = self._build_dependencies(project)
        logger.info("Scanned %s: %d test file(s)", root, len(project.files))
        return project

    def scan_files(self, paths: Iterable[Path], root: Optional[Path] = None) -> ProjectMap:
        """Build a project map from an explicit list of files.

        Missing or unreadable files become warnings rather than errors.
        """
        paths = [Path(p) for p in paths]
        root = Path(root).resolve() if root else common_root(paths)
        project = ProjectMap(root=root)
        seen: set[Path] = set()

        for path in paths:
            scanned = self._stat_file(path.resolve(), root, project)
            if scanned is None:
                continue
            if scanned.path in seen:
                continue
            seen.add(scanned.path)
            project.files.append(scanned)

        project.dependencies = self._build_dependencies(project)
        return project

    def _ignore_dir(self, name: str) -> bool:
        return name in self.IGNORED_DIRS or name.startswith(".")

    def _is_test_file(self, filename: str) -> bool:
        if filename.endswith(self.EXCLUDED_SUFFIXES):
            return False
        return filename.endswith(tuple(self.options.include_suffixes))

    def _stat_file(
        self, path: Path, root: Path, project: ProjectMap
    ) -> Optional[ScannedFile]:
        try:
            stats = path.stat()
        except OSError as e:
            logger.warning("Cannot stat %s: %s", path, e)
            project.warnings.append(ImportWarning(
                file=str(path),
                message=f"Could not read file: {e.strerror or e}",
                category=WarningCategory.STRUCTURE,
                code=WarningCode.UNREADABLE_FILE,
            ))
            return None
        if not path.is_file():
            project.warnings.append(ImportWarning(
                file=str(path),
                message="Not a regular file",
                category=WarningCategory.STRUCTURE,
                code=WarningCode.UNREADABLE_FILE,
            ))
            return None

        relative = relative_posix(path, root)
        return ScannedFile(
            path=path,
            relative_path=relative,
            role=classify_file(relative),
            size=stats.st_size,
            modified=datetime.fromtimestamp(stats.st_mtime),
        )

    def _build_dependencies(self, project: ProjectMap) -> dict[str, list[str]]:
        """Map each scanned file to the scanned files it imports relatively."""
        by_path = {f.path.resolve(): f.relative_path for f in project.files}
        dependencies: dict[str, list[str]] = {}

        for scanned in project.files:
            if scanned.size > self.options.max_file_size:
                dependencies[scanned.relative_path] = []
                continue
            try:
                text = scanned.path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                # Informational only; the pipeline reports the read failure
                dependencies[scanned.relative_path] = []
                continue
            found = []
            for spec in extract_relative_imports(text):
                target = _resolve_import(scanned.path.parent, spec, by_path)
                if target and target not in found:
                    found.append(target)
            dependencies[scanned.relative_path] = found

        return dependencies


def classify_file(relative_path: str) -> FileRole:
    """Decide a file's role from its location in the project."""
    parts = relative_path.split("/")
    if parts[-1] in ENTRY_FILE_NAMES:
        return FileRole.ENTRY
    if any(part in SUITE_DIR_NAMES for part in parts[:-1]):
        return FileRole.SUITE
    return FileRole.OTHER


def extract_relative_imports(text: str) -> list[str]:
    """Relative module specifiers from import/require statements."""
    return [
        spec for spec in IMPORT_PATTERN.findall(text)
        if spec.startswith("./") or spec.startswith("../")
    ]


def _resolve_import(directory: Path, spec: str, by_path: dict[Path, str]) -> Optional[str]:
    base = (directory / spec).resolve()
    for suffix in _RESOLVE_SUFFIXES:
        candidate = Path(str(base) + suffix)
        if candidate in by_path:
            return by_path[candidate]
    return None


def scan_project(root: Path, options: Optional[ImportOptions] = None) -> ProjectMap:
    """Scan a generated project directory."""
    return ProjectScanner(options).scan(root)
