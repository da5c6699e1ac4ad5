"""Side-channel workbook snapshot: loading, reconciliation and fidelity.

The exporter may save the complete original workbook at
``metadata/workbook.json`` inside the generated project. When it is there it
is ground truth: the import returns it unchanged and uses the entities
recovered from the test files only to report drift.
"""

import copy
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .models import (
    FieldMismatch,
    ImportWarning,
    ReconstructedRequest,
    ReconstructedRequestGroup,
    RoundTripAccuracy,
    WarningCategory,
    WarningCode,
    WorkbookItem,
)
from .utils import normalize_code

logger = logging.getLogger(__name__)

SNAPSHOT_RELATIVE_PATH = Path("metadata") / "workbook.json"
WORKBOOK_SECTIONS = ("scenarios", "authorizations", "certificates", "proxies", "data", "defaults")


@dataclass
class Snapshot:
    path: Path
    workbook: dict
    size: int


@dataclass
class ReconciliationOutcome:
    workbook: dict
    accuracy: RoundTripAccuracy
    warnings: list[ImportWarning] = field(default_factory=list)


class SnapshotCache:
    """Loaded snapshots keyed by path and modification time.

    Parameters
    ----------
    ttl : float
        Seconds an entry stays valid.
    clock : callable, optional
        Monotonic time source, replaceable in tests.
    """

    def __init__(self, ttl: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[tuple[Path, int], tuple[float, Snapshot]] = {}

    def get(self, path: Path, mtime_ns: int) -> Optional[Snapshot]:
        key = (path, mtime_ns)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, snapshot = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return snapshot

    def put(self, path: Path, mtime_ns: int, snapshot: Snapshot) -> None:
        # A path maps to one live entry; older mtimes are stale
        for key in [k for k in self._entries if k[0] == path]:
            del self._entries[key]
        self._entries[(path, mtime_ns)] = (self._clock() + self._ttl, snapshot)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _snapshot_warning(path: Path, message: str) -> ImportWarning:
    return ImportWarning(
        file=str(path),
        message=message,
        category=WarningCategory.METADATA,
        code=WarningCode.INVALID_SNAPSHOT,
    )


def load_snapshot(
    path: Path, cache: Optional[SnapshotCache] = None
) -> tuple[Optional[Snapshot], list[ImportWarning]]:
    """Load a snapshot file if it exists.

    Returns the snapshot (or None) and warnings for a snapshot that exists
    but cannot be used.
    """
    path = Path(path)
    if not path.is_file():
        return None, []
    resolved = path.resolve()

    try:
        mtime_ns = resolved.stat().st_mtime_ns
    except OSError as e:
        return None, [_snapshot_warning(path, f"Snapshot could not be read: {e}")]

    if cache is not None:
        cached = cache.get(resolved, mtime_ns)
        if cached is not None:
            logger.debug("Snapshot cache hit for %s", resolved)
            return cached, []

    try:
        raw = resolved.read_bytes()
    except OSError as e:
        return None, [_snapshot_warning(path, f"Snapshot could not be read: {e}")]

    try:
        workbook = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return None, [_snapshot_warning(path, f"Snapshot is not valid JSON, ignoring it: {e}")]

    if not isinstance(workbook, dict) or not isinstance(workbook.get("requests", []), list):
        return None, [_snapshot_warning(path, "Snapshot is not a workbook object, ignoring it")]

    snapshot = Snapshot(path=resolved, workbook=workbook, size=len(raw))
    if cache is not None:
        cache.put(resolved, mtime_ns, snapshot)
    return snapshot, []


def normalize_version(workbook: dict) -> dict:
    """Integral versions come back from JSON as ints; workbooks use floats."""
    version = workbook.get("version")
    if isinstance(version, int) and not isinstance(version, bool):
        workbook["version"] = float(version)
    return workbook


def iter_snapshot_items(items: Any, path: str = "requests") -> Iterator[tuple[str, dict]]:
    """(JSON path, item) for every request and group dict in a workbook tree."""
    if not isinstance(items, list):
        return
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        item_path = f"{path}[{index}]"
        yield item_path, item
        if "children" in item:
            yield from iter_snapshot_items(item["children"], f"{item_path}.children")


def iter_entities(items: list[WorkbookItem]) -> Iterator[WorkbookItem]:
    for item in items:
        yield item
        if isinstance(item, ReconstructedRequestGroup):
            yield from iter_entities(item.children)


def compare_with_snapshot(
    items: list[WorkbookItem], snapshot_workbook: dict
) -> list[FieldMismatch]:
    """Field-level differences between recovered entities and the snapshot."""
    by_id: dict[str, dict] = {}
    for _, item in iter_snapshot_items(snapshot_workbook.get("requests", [])):
        if isinstance(item.get("id"), str):
            by_id.setdefault(item["id"], item)

    mismatches: list[FieldMismatch] = []
    seen: set[str] = set()

    for entity in iter_entities(items):
        if isinstance(entity, ReconstructedRequestGroup) and entity.inferred:
            continue
        seen.add(entity.id)
        original = by_id.get(entity.id)
        prefix = f"requests[id={entity.id}]"
        if original is None:
            mismatches.append(FieldMismatch(path=prefix, expected=None, actual=entity.name))
            continue

        if original.get("name") != entity.name:
            mismatches.append(FieldMismatch(f"{prefix}.name", original.get("name"), entity.name))

        if isinstance(entity, ReconstructedRequest):
            if original.get("url") != entity.url:
                mismatches.append(FieldMismatch(f"{prefix}.url", original.get("url"), entity.url))
            if original.get("method") != entity.method.value:
                mismatches.append(
                    FieldMismatch(f"{prefix}.method", original.get("method"), entity.method.value)
                )
            if normalize_code(original.get("test")) != normalize_code(entity.test):
                mismatches.append(FieldMismatch(f"{prefix}.test", original.get("test"), entity.test))
        else:
            expected_children = [
                c.get("id") for c in original.get("children") or [] if isinstance(c, dict)
            ]
            actual_children = [c.id for c in entity.children]
            if expected_children != actual_children:
                mismatches.append(
                    FieldMismatch(f"{prefix}.children", expected_children, actual_children)
                )

    for item_id, item in by_id.items():
        if item_id not in seen:
            mismatches.append(
                FieldMismatch(path=f"requests[id={item_id}]", expected=item.get("name"), actual=None)
            )

    return mismatches


def _serialized_size(document: Any) -> int:
    return len(json.dumps(document, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))


def calculate_accuracy(
    structural_workbook: dict,
    snapshot_workbook: dict,
    mismatches: list[FieldMismatch],
) -> RoundTripAccuracy:
    """How close the files alone come to the snapshot."""
    original_size = _serialized_size(snapshot_workbook)
    rebuilt_size = _serialized_size(structural_workbook)
    preserved = 100.0 if original_size == 0 else min(100.0, rebuilt_size / original_size * 100)
    missing = [
        section for section in WORKBOOK_SECTIONS
        if snapshot_workbook.get(section) and not structural_workbook.get(section)
    ]
    return RoundTripAccuracy(
        has_snapshot=True,
        data_preserved=round(preserved, 2),
        missing_sections=missing,
        modified_fields=list(mismatches),
    )


def reconcile(
    items: list[WorkbookItem],
    structural_workbook: dict,
    snapshot: Snapshot,
) -> ReconciliationOutcome:
    """Return the snapshot as the workbook and report drift against it."""
    workbook = normalize_version(copy.deepcopy(snapshot.workbook))
    mismatches = compare_with_snapshot(items, snapshot.workbook)

    warnings = [
        ImportWarning(
            file=str(snapshot.path),
            message=f"Drift at {m.path}: snapshot has {m.expected!r}, files have {m.actual!r}",
            category=WarningCategory.METADATA,
            code=WarningCode.DRIFT,
        )
        for m in mismatches
    ]
    if mismatches:
        logger.info("Snapshot %s differs from the files in %d place(s)", snapshot.path, len(mismatches))

    return ReconciliationOutcome(
        workbook=workbook,
        accuracy=calculate_accuracy(structural_workbook, snapshot.workbook, mismatches),
        warnings=warnings,
    )
