"""Shared typed models.

This module defines the small value types passed between the
serializer and its archive backends.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class OpenMode(str, Enum):
    """Mode a serializer is opened in; fixed for its lifetime."""

    READ = "Read"
    WRITE = "Write"
    APPEND = "Append"


@dataclass(frozen=True)
class FieldID:
    """Locator of one stored field payload.

    Attributes:
        name: Field name.
        slot: Index into the archive's slot table for this field.
    """

    name: str
    slot: int

    def __str__(self) -> str:
        return f"{self.name}({self.slot})"


@dataclass(frozen=True)
class FileOffset:
    """One slot of the binary archive's per-field table.

    Attributes:
        offset: Byte offset of the payload inside the field's data file.
        checksum: Hex digest of the payload bytes.
        size: Payload length in bytes.
    """

    offset: int
    checksum: str
    size: int
