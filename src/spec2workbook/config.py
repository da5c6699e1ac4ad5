"""Configuration loading and validation."""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from .exceptions import ConfigError

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_SUFFIXES = (".spec.ts", ".test.ts")


@dataclass
class ImportOptions:
    """Options controlling an import run."""

    skip_validation: bool = False
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    preserve_unknown_fields: bool = True
    auto_generate_ids: bool = False
    skip_error_files: bool = True
    timeout: Optional[float] = None  # seconds
    max_workers: int = 1
    include_suffixes: tuple[str, ...] = field(default_factory=lambda: DEFAULT_SUFFIXES)
    metadata_window: int = 10

    def validate(self) -> None:
        """Validate option values."""
        if self.max_file_size <= 0:
            raise ConfigError("max_file_size must be positive.")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigError("timeout must be positive when set.")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1.")
        if self.metadata_window < 1:
            raise ConfigError("metadata_window must be at least 1.")
        if not self.include_suffixes:
            raise ConfigError("include_suffixes cannot be empty.")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {raw!r}.")


def _env_number(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}.") from e


def load_options(
    skip_validation: Optional[bool] = None,
    max_file_size: Optional[int] = None,
    preserve_unknown_fields: Optional[bool] = None,
    auto_generate_ids: Optional[bool] = None,
    skip_error_files: Optional[bool] = None,
    timeout: Optional[float] = None,
    max_workers: Optional[int] = None,
) -> ImportOptions:
    """Load options from .env and apply explicit overrides."""
    load_dotenv(find_dotenv(usecwd=True))

    options = ImportOptions(
        skip_validation=skip_validation if skip_validation is not None else False,
        max_file_size=max_file_size if max_file_size is not None else _env_number(
            "SPEC2WORKBOOK_MAX_FILE_SIZE", int, DEFAULT_MAX_FILE_SIZE
        ),
        preserve_unknown_fields=(
            preserve_unknown_fields if preserve_unknown_fields is not None
            else _env_bool("SPEC2WORKBOOK_PRESERVE_UNKNOWN_FIELDS", True)
        ),
        auto_generate_ids=(
            auto_generate_ids if auto_generate_ids is not None
            else _env_bool("SPEC2WORKBOOK_AUTO_GENERATE_IDS", False)
        ),
        skip_error_files=(
            skip_error_files if skip_error_files is not None
            else _env_bool("SPEC2WORKBOOK_SKIP_ERROR_FILES", True)
        ),
        timeout=timeout if timeout is not None else _env_number(
            "SPEC2WORKBOOK_TIMEOUT", float, None
        ),
        max_workers=max_workers if max_workers is not None else _env_number(
            "SPEC2WORKBOOK_MAX_WORKERS", int, 1
        ),
    )

    options.validate()
    return options
