"""
Assignment document loading and saving.

Reads an assignment (task definitions plus student submissions) from a JSON
file and writes it back once assessments have been assigned.
"""

import json
from pathlib import Path

from pydantic import ValidationError

from assessment_pipeline.models import Assignment


class AssignmentLoadError(Exception):
    """
    Raised when an assignment document cannot be read.

    Contains detailed information about the failure cause.
    """

    def __init__(self, message: str, file_path: str | Path, cause: Exception | None = None):
        self.file_path = str(file_path)
        self.cause = cause
        super().__init__(f"Failed to load '{file_path}': {message}")


def load_assignment(file_path: Path) -> Assignment:
    """
    Load an assignment from a JSON document.

    Artifacts without a ``contentHash`` get one derived from their content.

    Args:
        file_path: Path to the assignment JSON.

    Returns:
        The parsed Assignment.

    Raises:
        AssignmentLoadError: If the file is missing, unreadable or invalid.
    """
    if not file_path.exists():
        raise AssignmentLoadError("File does not exist", file_path)

    if not file_path.is_file():
        raise AssignmentLoadError("Path is not a file", file_path)

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise AssignmentLoadError(f"Could not read file: {e}", file_path, e) from e
    except json.JSONDecodeError as e:
        raise AssignmentLoadError(f"Invalid JSON: {e}", file_path, e) from e

    try:
        return Assignment.model_validate(data)
    except ValidationError as e:
        raise AssignmentLoadError(f"Invalid assignment document: {e}", file_path, e) from e


def save_assignment(assignment: Assignment, file_path: Path) -> Path:
    """
    Write an assignment, including its assessments, as JSON.

    Args:
        assignment: Assignment to save.
        file_path: Destination path. Parent directories are created.

    Returns:
        The path written.
    """
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(
        assignment.model_dump_json(by_alias=True, indent=2),
        encoding="utf-8",
    )
    return file_path
