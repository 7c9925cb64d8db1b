"""JSON I/O helpers for metadata documents."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from core.errors import SerialboxFilesystemError, SerialboxStructuralError


def read_json_document(document_path: Path) -> dict[str, Any]:
    """Read one JSON object from disk.

    Empty files yield an empty document.

    Raises:
        SerialboxFilesystemError: If the file cannot be read.
        SerialboxStructuralError: If the content is not a JSON object.
    """
    try:
        text = document_path.read_text(encoding="utf-8")
    except OSError as error:
        raise SerialboxFilesystemError(
            f"Failed to read metadata file {document_path}: {error}."
        ) from error
    if not text.strip():
        return {}
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as error:
        raise SerialboxStructuralError(
            f"Failed to parse JSON at {document_path}: {error.msg}. "
            "Restore the file from a backup or recreate the dataset."
        ) from error
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise SerialboxStructuralError(
            f"Failed to parse metadata at {document_path}: expected JSON object at top level."
        )
    return payload


def write_json_document(document_path: Path, payload: object) -> None:
    """Write one JSON document to disk, replacing previous content."""
    try:
        document_path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    except OSError as error:
        raise SerialboxFilesystemError(
            f"Failed to write metadata file {document_path}: {error}. "
            "Check write permissions and available disk space."
        ) from error
