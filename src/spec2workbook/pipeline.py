"""Import orchestrator: project directory in, workbook document out."""

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .builder import EntityBuilder
from .config import ImportOptions
from .exceptions import (
    FileProcessingError,
    FileReadError,
    ImportPipelineError,
    ImportTimeoutError,
    ReconstructionError,
)
from .models import (
    ImportResult,
    ImportStage,
    ImportStatistics,
    ImportWarning,
    ProjectMap,
    RecoveredError,
    ScannedFile,
    WarningCategory,
    WarningCode,
    WorkbookItem,
)
from .parsers import SpanParser, get_span_parser
from .reconstructor import FileReconstruction, HierarchyReconstructor
from .scanner import ProjectScanner
from .snapshot import (
    SNAPSHOT_RELATIVE_PATH,
    WORKBOOK_SECTIONS,
    SnapshotCache,
    load_snapshot,
    reconcile,
)
from .validator import ID_SECTIONS, Provenance, build_provenance, validate_workbook

logger = logging.getLogger(__name__)

WORKBOOK_VERSION = 1.0

# What happened to the data an error was about
RECOVERY_ACTIONS = {
    "file-read-error": "file skipped",
    "incomplete-metadata-block": "block skipped",
    "invalid-metadata-json": "block skipped",
    "missing-required-field": "entity skipped",
    "invalid-field-type": "entity skipped",
}

# Stage an escalated error is reported under; block and read errors are extraction
ERROR_STAGES = {
    "missing-required-field": ImportStage.RECONSTRUCTING,
    "invalid-field-type": ImportStage.RECONSTRUCTING,
}


@dataclass
class _FileOutcome:
    scanned: ScannedFile
    reconstruction: Optional[FileReconstruction] = None
    warnings: list[ImportWarning] = field(default_factory=list)
    errors: list[ReconstructionError] = field(default_factory=list)
    bytes_read: int = 0


@dataclass
class _Run:
    started: float
    deadline: Optional[float]
    stage: ImportStage = ImportStage.SCANNING

    def enter(self, stage: ImportStage) -> None:
        logger.debug("Import stage: %s", stage.value)
        self.stage = stage

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def check_deadline(self) -> None:
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ImportTimeoutError("Import exceeded its timeout", stage=self.stage)


class ImportPipeline:
    """Runs the scan, reconstruct, reconcile and validate stages.

    A pipeline holds no per-run state, so one instance (and its snapshot
    cache) can serve several imports.
    """

    def __init__(
        self,
        options: Optional[ImportOptions] = None,
        snapshot_cache: Optional[SnapshotCache] = None,
        parser: Optional[SpanParser] = None,
    ):
        self.options = options or ImportOptions()
        self.options.validate()
        self.snapshot_cache = snapshot_cache
        self.scanner = ProjectScanner(self.options)
        self.reconstructor = HierarchyReconstructor(
            builder=EntityBuilder(
                preserve_unknown_fields=self.options.preserve_unknown_fields,
                auto_generate_ids=self.options.auto_generate_ids,
            ),
            parser=parser or get_span_parser(window=self.options.metadata_window),
        )

    def import_project(self, root: Path) -> ImportResult:
        """Import a generated project directory.

        Raises:
            PathNotFoundError, ProjectNotADirectoryError: bad root.
            FileProcessingError: a per-file error while error files are not skipped.
            ImportTimeoutError: the run exceeded ``options.timeout``.
        """
        run = self._start()
        try:
            project = self.scanner.scan(Path(root))
            return self._run(run, project, project.root / SNAPSHOT_RELATIVE_PATH)
        except ImportPipelineError as e:
            self._fail(run, e)
            raise

    def import_from_files(
        self, paths: Iterable[Path], snapshot_path: Optional[Path] = None
    ) -> ImportResult:
        """Import an explicit list of files, optionally with a snapshot."""
        run = self._start()
        try:
            project = self.scanner.scan_files(paths)
            return self._run(run, project, Path(snapshot_path) if snapshot_path else None)
        except ImportPipelineError as e:
            self._fail(run, e)
            raise

    def _start(self) -> _Run:
        started = time.monotonic()
        timeout = self.options.timeout
        return _Run(started=started, deadline=started + timeout if timeout else None)

    @staticmethod
    def _fail(run: _Run, error: ImportPipelineError) -> None:
        if error.stage is None:
            error.stage = run.stage
        logger.error("Import failed during %s: %s", ImportStage(error.stage).value, error)
        run.stage = ImportStage.FAILED

    def _run(
        self, run: _Run, project: ProjectMap, snapshot_path: Optional[Path]
    ) -> ImportResult:
        """Run every stage after scanning.

        Each file is extracted and reconstructed in one pass, possibly on a
        worker thread, so per-file work runs while the stage reads
        EXTRACTING. An escalated error carries the stage of its kind instead
        (see ``ERROR_STAGES``).
        """
        stats = ImportStatistics(files_scanned=len(project.files))
        warnings: list[ImportWarning] = list(project.warnings)
        recovered: list[RecoveredError] = []
        items: list[WorkbookItem] = []
        file_metadata: list[dict] = []

        run.enter(ImportStage.EXTRACTING)
        for outcome in self._process_files(run, project.files):
            stats.bytes_scanned += outcome.bytes_read
            warnings.extend(outcome.warnings)
            for error in outcome.errors:
                if not self.options.skip_error_files:
                    raise FileProcessingError(
                        f"Failed to process {outcome.scanned.relative_path}: {error}",
                        stage=ERROR_STAGES.get(error.code, ImportStage.EXTRACTING),
                    ) from error
                recovered.append(_recovered(error, outcome.scanned.relative_path))
            reconstruction = outcome.reconstruction
            if reconstruction is None:
                continue
            if reconstruction.has_metadata or outcome.errors:
                stats.files_with_metadata += 1
            items.extend(reconstruction.items)
            file_metadata.extend(reconstruction.file_metadata)

        run.check_deadline()
        run.enter(ImportStage.RECONSTRUCTING)
        structural = {
            "version": WORKBOOK_VERSION,
            "requests": [item.to_dict() for item in items],
            **{name: [] for name in ID_SECTIONS},
        }

        run.enter(ImportStage.RECONCILING)
        workbook = structural
        accuracy = None
        snapshot = None
        if snapshot_path is not None:
            snapshot, snapshot_warnings = load_snapshot(snapshot_path, self.snapshot_cache)
            warnings.extend(snapshot_warnings)
        if snapshot is not None:
            reconciled = reconcile(items, structural, snapshot)
            workbook = reconciled.workbook
            accuracy = reconciled.accuracy
            warnings.extend(reconciled.warnings)
            stats.original_file_size = snapshot.size
            logger.info("Using snapshot %s as the workbook", snapshot.path)
        else:
            warnings.append(ImportWarning(
                file=str(snapshot_path or project.root),
                message="No metadata snapshot; these sections cannot be recovered: "
                        + ", ".join(WORKBOOK_SECTIONS),
                category=WarningCategory.DATA_LOSS,
                code=WarningCode.MISSING_SNAPSHOT,
            ))

        if not self.options.skip_validation:
            run.enter(ImportStage.VALIDATING)
            warnings.extend(validate_workbook(
                workbook,
                build_provenance(items) if snapshot is None else _snapshot_provenance(items),
                default_file=str(snapshot.path) if snapshot else str(project.root),
            ))

        requests, groups = count_items(workbook.get("requests"))
        stats.requests_reconstructed = requests
        stats.groups_reconstructed = groups
        stats.reconstructed_file_size = len(json.dumps(workbook, indent=2).encode("utf-8"))
        stats.processing_time = (time.monotonic() - run.started) * 1000

        run.enter(ImportStage.DONE)
        logger.info(
            "Imported %s: %d request(s), %d group(s), %d warning(s), %d recovered error(s)",
            project.root, requests, groups, len(warnings), len(recovered),
        )
        return ImportResult(
            workbook=workbook,
            project_path=project.root,
            statistics=stats,
            warnings=warnings,
            recovered_errors=recovered,
            round_trip_accuracy=accuracy,
            file_metadata=file_metadata,
            stage=ImportStage.DONE,
        )

    def _process_files(self, run: _Run, files: list[ScannedFile]) -> Iterator[_FileOutcome]:
        """Yield one outcome per file, always in scan order."""
        if self.options.max_workers <= 1 or len(files) <= 1:
            for scanned in files:
                run.check_deadline()
                yield self._process_file(scanned)
            return

        executor = ThreadPoolExecutor(max_workers=self.options.max_workers)
        try:
            futures: list[Future] = [executor.submit(self._process_file, f) for f in files]
            for future in futures:
                run.check_deadline()
                try:
                    yield future.result(timeout=run.remaining())
                except FutureTimeoutError as e:
                    raise ImportTimeoutError(
                        "Import exceeded its timeout", stage=run.stage
                    ) from e
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _process_file(self, scanned: ScannedFile) -> _FileOutcome:
        outcome = _FileOutcome(scanned=scanned)
        if scanned.size > self.options.max_file_size:
            logger.warning(
                "Skipping %s: %d bytes exceeds the %d byte limit",
                scanned.relative_path, scanned.size, self.options.max_file_size,
            )
            outcome.warnings.append(ImportWarning(
                file=scanned.relative_path,
                message=f"File is {scanned.size} bytes, over the "
                        f"{self.options.max_file_size} byte limit; skipped",
                category=WarningCategory.DATA_LOSS,
                code=WarningCode.OVERSIZED_FILE,
            ))
            return outcome

        try:
            raw = self._read(scanned)
        except FileReadError as e:
            logger.warning("Skipping %s: %s", scanned.relative_path, e)
            outcome.errors.append(e)
            return outcome

        outcome.bytes_read = len(raw)
        lines = raw.decode("utf-8", errors="replace").splitlines()
        reconstruction = self.reconstructor.reconstruct(lines, scanned.relative_path)
        outcome.reconstruction = reconstruction
        outcome.warnings.extend(reconstruction.warnings)
        outcome.errors.extend(reconstruction.errors)
        return outcome

    @staticmethod
    def _read(scanned: ScannedFile) -> bytes:
        try:
            return scanned.path.read_bytes()
        except OSError as e:
            raise FileReadError(
                f"Could not read file: {e.strerror or e}", file=scanned.relative_path
            ) from e


def _recovered(error: ReconstructionError, default_file: str) -> RecoveredError:
    return RecoveredError(
        file=error.file or default_file,
        line=error.line,
        message=error.message,
        code=error.code,
        recovery=RECOVERY_ACTIONS.get(error.code, "skipped"),
    )


def _snapshot_provenance(items: list[WorkbookItem]) -> Provenance:
    """Snapshot paths differ from reconstructed ones; locate by id only."""
    provenance = build_provenance(items)
    provenance.by_path.clear()
    return provenance


def count_items(items) -> tuple[int, int]:
    """(requests, groups) in a workbook ``requests`` tree."""
    requests = groups = 0
    if not isinstance(items, list):
        return requests, groups
    for item in items:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("children"), list):
            groups += 1
            child_requests, child_groups = count_items(item["children"])
            requests += child_requests
            groups += child_groups
        else:
            requests += 1
    return requests, groups


def import_project(root: Path, options: Optional[ImportOptions] = None) -> ImportResult:
    """Import a generated project directory with a one-off pipeline."""
    return ImportPipeline(options).import_project(root)


def import_from_files(
    paths: Iterable[Path],
    options: Optional[ImportOptions] = None,
    snapshot_path: Optional[Path] = None,
) -> ImportResult:
    """Import an explicit list of files with a one-off pipeline."""
    return ImportPipeline(options).import_from_files(paths, snapshot_path)
