"""Public SDK surface for Serialbox.

This module provides a stable import path for library users.
It re-exports the serializer and the typed metadata models.
"""

from __future__ import annotations

from archive.archive_factory import ArchiveFactory, default_archive_factory
from archive.binary_archive import BinaryArchive
from core.config import SerialboxConfig
from core.errors import (
    SerialboxConfigError,
    SerialboxDuplicateFieldError,
    SerialboxError,
    SerialboxFilesystemError,
    SerialboxModeError,
    SerialboxShapeMismatchError,
    SerialboxStructuralError,
    SerialboxTypeMismatchError,
    SerialboxUnknownFieldError,
    SerialboxUnknownSavepointError,
)
from core.type_id import TypeID
from core.types import FieldID, OpenMode
from metadata.field_map import FieldMetaInfo
from metadata.meta_info import MetaInfoMap, MetaInfoValue
from metadata.savepoint import Savepoint
from serialize.legacy_upgrade import mtime_upgrade_policy
from serialize.serializer import Serializer

__all__ = [
    "ArchiveFactory",
    "BinaryArchive",
    "FieldID",
    "FieldMetaInfo",
    "MetaInfoMap",
    "MetaInfoValue",
    "OpenMode",
    "Savepoint",
    "SerialboxConfig",
    "SerialboxConfigError",
    "SerialboxDuplicateFieldError",
    "SerialboxError",
    "SerialboxFilesystemError",
    "SerialboxModeError",
    "SerialboxShapeMismatchError",
    "SerialboxStructuralError",
    "SerialboxTypeMismatchError",
    "SerialboxUnknownFieldError",
    "SerialboxUnknownSavepointError",
    "Serializer",
    "TypeID",
    "default_archive_factory",
    "mtime_upgrade_policy",
]
