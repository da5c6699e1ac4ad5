"""Write a recovered workbook to disk."""

import json
from pathlib import Path

WORKBOOK_SUFFIX = ".apicize"


def format_workbook(workbook: dict) -> str:
    return json.dumps(workbook, indent=2, ensure_ascii=False) + "\n"


def write_workbook(workbook: dict, output_path: Path, overwrite: bool = False) -> Path:
    """Write a workbook document as JSON.

    Parent directories are created. An existing file is only replaced when
    ``overwrite`` is set; otherwise FileExistsError is raised.

    Returns the path written.
    """
    output_path = Path(output_path)
    if output_path.exists() and not overwrite:
        raise FileExistsError(f"Output file already exists: {output_path}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(format_workbook(workbook), encoding="utf-8")
    return output_path
