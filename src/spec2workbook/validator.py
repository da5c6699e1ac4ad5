"""Structural checks over a finished workbook document."""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from .models import (
    ImportWarning,
    ReconstructedRequestGroup,
    SourceLocation,
    WarningCategory,
    WarningCode,
    WorkbookItem,
)

logger = logging.getLogger(__name__)

ID_SECTIONS = ("scenarios", "authorizations", "certificates", "proxies", "data")
DEFAULT_REFERENCES = (
    "selectedAuthorization",
    "selectedCertificate",
    "selectedProxy",
    "selectedScenario",
)


@dataclass
class Provenance:
    """Where each entity of a reconstructed workbook came from.

    ``by_path`` is keyed by JSON path (``requests[0].children[2]``) and
    matches a workbook built from the same items. ``by_id`` covers
    workbooks with a different layout, such as a snapshot.
    """

    by_path: dict[str, SourceLocation] = field(default_factory=dict)
    by_id: dict[str, list[SourceLocation]] = field(default_factory=dict)

    def locate(self, path: str, item_id: Any = None) -> Optional[SourceLocation]:
        location = self.by_path.get(path)
        if location is None and isinstance(item_id, str):
            candidates = self.by_id.get(item_id)
            location = candidates[0] if candidates else None
        return location


def build_provenance(items: list[WorkbookItem], path: str = "requests") -> Provenance:
    provenance = Provenance()
    _collect(items, path, provenance)
    return provenance


def _collect(items: list[WorkbookItem], path: str, provenance: Provenance) -> None:
    for index, item in enumerate(items):
        item_path = f"{path}[{index}]"
        provenance.by_path[item_path] = item.source
        provenance.by_id.setdefault(item.id, []).append(item.source)
        if isinstance(item, ReconstructedRequestGroup):
            _collect(item.children, f"{item_path}.children", provenance)


class _Findings:
    def __init__(self, provenance: Provenance, default_file: str):
        self.provenance = provenance
        self.default_file = default_file
        self.warnings: list[ImportWarning] = []

    def add(self, code: WarningCode, message: str, path: str, item_id: Any = None) -> None:
        location = self.provenance.locate(path, item_id)
        self.warnings.append(ImportWarning(
            file=location.file if location else self.default_file,
            line=location.line if location else None,
            message=f"{path}: {message}",
            category=WarningCategory.VALIDATION,
            code=code,
        ))


def validate_workbook(
    workbook: dict,
    provenance: Optional[Provenance] = None,
    default_file: str = "",
) -> list[ImportWarning]:
    """Check a workbook document and return validation warnings.

    Nothing is modified; duplicate ids in particular are reported and kept.
    """
    findings = _Findings(provenance or Provenance(), default_file)

    version = workbook.get("version")
    if isinstance(version, bool) or not isinstance(version, (int, float)):
        findings.add(WarningCode.INVALID_STRUCTURE, f"version must be a number, got {version!r}", "version")

    requests = workbook.get("requests")
    seen: dict[str, str] = {}
    if not isinstance(requests, list):
        findings.add(WarningCode.INVALID_STRUCTURE, "requests must be a list", "requests")
    else:
        _check_items(requests, "requests", findings, seen)

    for section in ID_SECTIONS:
        entries = workbook.get(section)
        if not isinstance(entries, list):
            continue
        for index, entry in enumerate(entries):
            if isinstance(entry, dict) and isinstance(entry.get("id"), str):
                _check_duplicate(entry["id"], f"{section}[{index}]", findings, seen)

    defaults = workbook.get("defaults")
    if isinstance(defaults, dict):
        for name in DEFAULT_REFERENCES:
            ref = defaults.get(name)
            if isinstance(ref, dict) and ref.get("id") and ref["id"] not in seen:
                findings.add(
                    WarningCode.INVALID_REFERENCE,
                    f"references unknown id {ref['id']!r}",
                    f"defaults.{name}.id",
                )

    if findings.warnings:
        logger.info("Validation found %d issue(s)", len(findings.warnings))
    return findings.warnings


def _check_items(items: list, path: str, findings: _Findings, seen: dict[str, str]) -> None:
    for index, item in enumerate(items):
        item_path = f"{path}[{index}]"
        if not isinstance(item, dict):
            findings.add(WarningCode.INVALID_STRUCTURE, "item must be an object", item_path)
            continue

        item_id = item.get("id")
        for name in ("id", "name"):
            if not item.get(name):
                findings.add(WarningCode.MISSING_FIELD, f'missing "{name}"', item_path, item_id)
        if isinstance(item_id, str) and item_id:
            _check_duplicate(item_id, item_path, findings, seen)

        if "children" in item:
            children = item["children"]
            if not isinstance(children, list):
                findings.add(
                    WarningCode.INVALID_STRUCTURE, "group children must be a list", item_path, item_id
                )
                continue
            _check_items(children, f"{item_path}.children", findings, seen)
        else:
            for name in ("url", "method"):
                if not item.get(name):
                    findings.add(
                        WarningCode.MISSING_FIELD, f'request is missing "{name}"', item_path, item_id
                    )


def _check_duplicate(item_id: str, path: str, findings: _Findings, seen: dict[str, str]) -> None:
    first = seen.get(item_id)
    if first is None:
        seen[item_id] = path
        return
    findings.add(
        WarningCode.DUPLICATE_ID,
        f"id {item_id!r} is already used at {first}",
        path,
    )
