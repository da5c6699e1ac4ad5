"""Custom exceptions for spec2workbook."""

from typing import Optional


class Spec2WorkbookError(Exception):
    """Base exception for spec2workbook."""


class ConfigError(Spec2WorkbookError):
    """Raised when configuration is missing or invalid."""


class ImportPipelineError(Spec2WorkbookError):
    """Raised when an import run fails as a whole."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class PathNotFoundError(ImportPipelineError):
    """Raised when the project root does not exist."""


class ProjectNotADirectoryError(ImportPipelineError):
    """Raised when the project root is not a directory."""


class FileProcessingError(ImportPipelineError):
    """Raised when a per-file error escalates because error files are not skipped."""


class ImportTimeoutError(ImportPipelineError):
    """Raised when an import run exceeds its configured timeout."""


class ReconstructionError(Spec2WorkbookError):
    """Base for errors scoped to a single file, block or entity.

    These are recorded on the import result and only abort the run when
    error files are not skipped.
    """

    code = "reconstruction-error"

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.file = file
        self.line = line

    def __str__(self) -> str:
        location = ""
        if self.file:
            location = f"{self.file}:{self.line}: " if self.line else f"{self.file}: "
        elif self.line:
            location = f"line {self.line}: "
        return f"{location}{self.message}"


class FileReadError(ReconstructionError):
    code = "file-read-error"


class IncompleteMetadataBlockError(ReconstructionError):
    code = "incomplete-metadata-block"


class InvalidMetadataJsonError(ReconstructionError):
    """Raised when a metadata block does not hold valid JSON.

    ``detail`` keeps the decoder's own message.
    """

    code = "invalid-metadata-json"

    def __init__(
        self,
        message: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
        detail: str = "",
    ):
        super().__init__(message, file=file, line=line)
        self.detail = detail


class MissingRequiredFieldError(ReconstructionError):
    code = "missing-required-field"

    def __init__(
        self,
        field: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ):
        super().__init__(f'Missing required field "{field}"', file=file, line=line)
        self.field = field


class InvalidFieldTypeError(ReconstructionError):
    code = "invalid-field-type"

    def __init__(
        self,
        field: str,
        reason: str,
        file: Optional[str] = None,
        line: Optional[int] = None,
    ):
        super().__init__(f'Invalid field "{field}": {reason}', file=file, line=line)
        self.field = field
