"""CLI entry point for spec2workbook."""

import logging
import sys
from pathlib import Path

import click

from .config import load_options
from .exceptions import ConfigError, ImportPipelineError
from .models import ImportResult, ImportStage
from .pipeline import ImportPipeline
from .utils import sanitize_filename
from .writer import WORKBOOK_SUFFIX, write_workbook


def _print_summary(result: ImportResult, verbose: bool) -> None:
    stats = result.statistics
    click.echo(f"Files scanned: {stats.files_scanned} ({stats.files_with_metadata} with metadata)")
    click.echo(
        f"Recovered {stats.requests_reconstructed} request(s) and "
        f"{stats.groups_reconstructed} group(s) in {stats.processing_time:.0f} ms"
    )

    accuracy = result.round_trip_accuracy
    if accuracy is not None:
        click.echo(f"Snapshot used; files alone preserve {accuracy.data_preserved:.1f}% of it")
        if accuracy.missing_sections:
            click.echo(f"  Only in snapshot: {', '.join(accuracy.missing_sections)}")
        if accuracy.modified_fields:
            click.echo(f"  {len(accuracy.modified_fields)} field(s) drifted from the snapshot")

    if result.warnings:
        click.echo(f"{len(result.warnings)} warning(s)")
        if verbose:
            for warning in result.warnings:
                location = f"{warning.file}:{warning.line}" if warning.line else warning.file
                click.echo(f"  [{warning.code.value}] {location}: {warning.message}")

    for error in result.recovered_errors:
        location = f"{error.file}:{error.line}" if error.line else error.file
        click.echo(f"  {location}: {error.message} ({error.recovery})", err=True)


@click.command()
@click.argument("project_dir", type=click.Path(path_type=Path))
@click.option(
    "--output", "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Workbook file to write (default: <project dir name>.apicize)",
)
@click.option(
    "--overwrite",
    is_flag=True,
    default=False,
    help="Replace the output file if it exists",
)
@click.option(
    "--no-validate",
    is_flag=True,
    default=False,
    help="Skip the validation pass",
)
@click.option(
    "--fail-fast",
    is_flag=True,
    default=False,
    help="Abort on the first file error instead of skipping it",
)
@click.option(
    "--max-file-size",
    type=int,
    default=None,
    help="Skip files larger than this many bytes (default: 10 MiB or SPEC2WORKBOOK_MAX_FILE_SIZE)",
)
@click.option(
    "--workers",
    type=int,
    default=None,
    help="Files processed in parallel (default: 1)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Give up after this many seconds",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable verbose output",
)
def main(project_dir, output, overwrite, no_validate, fail_fast, max_file_size, workers, timeout, verbose):
    """Rebuild an API workbook from a generated test project.

    Reads the metadata embedded in the project's test files (and the
    metadata/workbook.json snapshot when present) and writes the workbook.

    Example: spec2workbook ./exported-tests -o tests.apicize
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = load_options(
            skip_validation=no_validate or None,
            max_file_size=max_file_size,
            skip_error_files=False if fail_fast else None,
            timeout=timeout,
            max_workers=workers,
        )
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(2)

    if output is None:
        output = Path(sanitize_filename(project_dir.resolve().name) + WORKBOOK_SUFFIX)
    if output.suffix != WORKBOOK_SUFFIX:
        click.echo(f"Output file must end in {WORKBOOK_SUFFIX}: {output}", err=True)
        sys.exit(2)

    if verbose:
        click.echo(f"Importing: {project_dir}")

    try:
        result = ImportPipeline(options).import_project(project_dir)
    except ImportPipelineError as e:
        stage = f" during {ImportStage(e.stage).value}" if e.stage else ""
        click.echo(f"Import failed{stage}: {e}", err=True)
        sys.exit(2)

    _print_summary(result, verbose)

    try:
        written = write_workbook(result.workbook, output, overwrite=overwrite)
    except OSError as e:
        click.echo(f"Failed to write workbook: {e}", err=True)
        sys.exit(2)
    click.echo(f"Wrote workbook to: {written}")

    if result.recovered_errors:
        sys.exit(1)
    click.echo("Done!")
    sys.exit(0)
