"""Data models for spec2workbook."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, unique
from pathlib import Path
from typing import Any, Optional, Union


@unique
class FileRole(str, Enum):
    ENTRY = "entry"
    SUITE = "suite"
    OTHER = "other"


@unique
class BlockKind(str, Enum):
    REQUEST = "request"
    GROUP = "group"
    FILE = "file"


@unique
class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


@unique
class BodyType(str, Enum):
    NONE = "None"
    TEXT = "Text"
    JSON = "JSON"
    XML = "XML"
    FORM = "Form"
    RAW = "Raw"


@unique
class ExecutionMode(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    CONCURRENT = "CONCURRENT"


@unique
class WarningCategory(str, Enum):
    METADATA = "metadata"
    STRUCTURE = "structure"
    VALIDATION = "validation"
    DATA_LOSS = "data-loss"


@unique
class WarningCode(str, Enum):
    UNREADABLE_DIRECTORY = "unreadable-directory"
    UNREADABLE_FILE = "unreadable-file"
    OVERSIZED_FILE = "oversized-file"
    INVALID_FIELD_TYPE = "invalid-field-type"
    GENERATED_ID = "generated-id"
    REQUEST_HAS_CHILDREN = "request-has-children"
    ORPHANED_METADATA = "orphaned-metadata"
    NAME_MISMATCH = "name-mismatch"
    TEST_CODE_DRIFT = "test-code-drift"
    MISSING_SNAPSHOT = "missing-snapshot"
    INVALID_SNAPSHOT = "invalid-snapshot"
    DRIFT = "drift"
    DUPLICATE_ID = "duplicate-id"
    MISSING_FIELD = "missing-field"
    INVALID_STRUCTURE = "invalid-structure"
    INVALID_REFERENCE = "invalid-reference"


@unique
class ImportStage(str, Enum):
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    RECONSTRUCTING = "reconstructing"
    VALIDATING = "validating"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ImportWarning:
    """Non-fatal finding reported on the import result."""

    file: str
    message: str
    category: WarningCategory
    code: WarningCode
    line: Optional[int] = None


@dataclass(frozen=True)
class RecoveredError:
    """A per-item error the run survived."""

    file: str
    message: str
    code: str
    recovery: str
    line: Optional[int] = None


@dataclass(frozen=True)
class ScannedFile:
    """A test file discovered in the generated project."""

    path: Path
    relative_path: str
    role: FileRole
    size: int
    modified: datetime


@dataclass
class ProjectMap:
    """Flat map of a scanned project."""

    root: Path
    files: list[ScannedFile] = field(default_factory=list)
    dependencies: dict[str, list[str]] = field(default_factory=dict)
    warnings: list[ImportWarning] = field(default_factory=list)

    @property
    def entry_files(self) -> list[ScannedFile]:
        return [f for f in self.files if f.role == FileRole.ENTRY]

    @property
    def suite_files(self) -> list[ScannedFile]:
        return [f for f in self.files if f.role == FileRole.SUITE]


@dataclass(frozen=True)
class MetadataBlock:
    """A comment-embedded JSON block, parsed but not interpreted."""

    kind: BlockKind
    payload: Any
    line: int
    end_line: int
    source_file: str


@dataclass
class StructuralSpan:
    """A nested block declaration (e.g. a ``describe`` call) in source text."""

    name: str
    start_line: int
    indent: int
    end_line: int = -1
    children: list["StructuralSpan"] = field(default_factory=list)
    metadata_line: Optional[int] = None

    def encloses(self, line: int) -> bool:
        return self.start_line < line <= self.end_line


@dataclass(frozen=True)
class SourceLocation:
    file: str
    line: Optional[int] = None


@dataclass(frozen=True)
class NameValuePair:
    name: str
    value: str
    disabled: Optional[bool] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.disabled is not None:
            data["disabled"] = self.disabled
        return data


@dataclass
class RequestBody:
    """Request payload; the shape of ``data`` depends on ``type``."""

    type: BodyType
    data: Any = None
    formatted: Optional[str] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"type": self.type.value}
        if self.type == BodyType.FORM and self.data is not None:
            data["data"] = [pair.to_dict() for pair in self.data]
        elif self.data is not None:
            data["data"] = self.data
        if self.formatted is not None:
            data["formatted"] = self.formatted
        return data


@dataclass
class ReconstructedRequest:
    """A single HTTP request recovered from a metadata block."""

    id: str
    name: str
    url: str
    method: HttpMethod
    source: SourceLocation
    test: Optional[str] = None
    headers: Optional[list[NameValuePair]] = None
    query_string_params: Optional[list[NameValuePair]] = None
    body: Optional[RequestBody] = None
    timeout: Optional[float] = None
    number_of_redirects: Optional[int] = None
    runs: Optional[int] = None
    multi_run_execution: Optional[ExecutionMode] = None
    keep_alive: Optional[bool] = None
    accept_invalid_certs: Optional[bool] = None
    mode: Optional[str] = None
    referrer: Optional[str] = None
    referrer_policy: Optional[str] = None
    duplex: Optional[str] = None
    selections: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "method": self.method.value,
        }
        if self.test is not None:
            data["test"] = self.test
        if self.headers is not None:
            data["headers"] = [pair.to_dict() for pair in self.headers]
        if self.query_string_params is not None:
            data["queryStringParams"] = [
                pair.to_dict() for pair in self.query_string_params
            ]
        if self.body is not None:
            data["body"] = self.body.to_dict()
        scalars = {
            "timeout": self.timeout,
            "numberOfRedirects": self.number_of_redirects,
            "runs": self.runs,
            "multiRunExecution": (
                self.multi_run_execution.value if self.multi_run_execution else None
            ),
            "keepAlive": self.keep_alive,
            "acceptInvalidCerts": self.accept_invalid_certs,
            "mode": self.mode,
            "referrer": self.referrer,
            "referrerPolicy": self.referrer_policy,
            "duplex": self.duplex,
        }
        data.update({k: v for k, v in scalars.items() if v is not None})
        data.update(self.selections)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


@dataclass
class ReconstructedRequestGroup:
    """An ordered, named collection of requests and nested groups."""

    id: str
    name: str
    source: SourceLocation
    children: list["WorkbookItem"] = field(default_factory=list)
    execution: Optional[ExecutionMode] = None
    runs: Optional[int] = None
    multi_run_execution: Optional[ExecutionMode] = None
    selections: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    inferred: bool = False

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "children": [child.to_dict() for child in self.children],
        }
        if self.execution is not None:
            data["execution"] = self.execution.value
        if self.runs is not None:
            data["runs"] = self.runs
        if self.multi_run_execution is not None:
            data["multiRunExecution"] = self.multi_run_execution.value
        data.update(self.selections)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data


WorkbookItem = Union[ReconstructedRequest, ReconstructedRequestGroup]


@dataclass(frozen=True)
class FieldMismatch:
    path: str
    expected: Any
    actual: Any


@dataclass
class RoundTripAccuracy:
    """How much of a known-original workbook the files alone reproduce."""

    has_snapshot: bool
    data_preserved: float
    missing_sections: list[str] = field(default_factory=list)
    modified_fields: list[FieldMismatch] = field(default_factory=list)


@dataclass
class ImportStatistics:
    files_scanned: int = 0
    files_with_metadata: int = 0
    requests_reconstructed: int = 0
    groups_reconstructed: int = 0
    processing_time: float = 0.0  # milliseconds
    bytes_scanned: int = 0
    original_file_size: Optional[int] = None
    reconstructed_file_size: int = 0


@dataclass
class ImportResult:
    """Everything an import run produces."""

    workbook: dict
    project_path: Path
    statistics: ImportStatistics
    warnings: list[ImportWarning] = field(default_factory=list)
    recovered_errors: list[RecoveredError] = field(default_factory=list)
    round_trip_accuracy: Optional[RoundTripAccuracy] = None
    file_metadata: list[dict] = field(default_factory=list)
    stage: ImportStage = ImportStage.DONE

    def warnings_with_code(self, code: WarningCode) -> list[ImportWarning]:
        return [w for w in self.warnings if w.code == code]
