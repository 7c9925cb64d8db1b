"""Upgrade of legacy ``<prefix>.json`` metadata.

Legacy datasets describe fields in a ``FieldsTable`` and store one
``OffsetTable`` entry per savepoint with the raw byte offset and checksum
of every field written there. The upgrade rebuilds the field registry,
the savepoint registry and the binary archive's slot tables from those
tables alone; payload files are never reread.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from pathlib import Path
from typing import Any, Callable, Mapping

from archive.binary_archive import BinaryArchive
from core.constants import (
    LEGACY_DIMENSION_KEYS,
    LEGACY_ELEMENT_TYPE_KEY,
    LEGACY_FIELDS_TABLE_KEY,
    LEGACY_GLOBAL_META_INFO_KEY,
    LEGACY_METADATA_FILE_TEMPLATE,
    LEGACY_NAME_KEY,
    LEGACY_OFFSET_TABLE_KEY,
    LEGACY_OFFSETS_KEY,
    LEGACY_OPTIONAL_DIMENSION_KEY,
    LEGACY_RESERVED_PREFIX,
    METADATA_FILE_TEMPLATE,
)
from core.errors import (
    SerialboxFilesystemError,
    SerialboxModeError,
    SerialboxStructuralError,
)
from core.json_io import read_json_document
from core.logging_config import get_logger
from core.type_id import TypeID, type_id_from_legacy_tag
from core.types import FileOffset, OpenMode
from metadata.field_map import FieldMap
from metadata.meta_info import MetaInfoMap, MetaInfoValue
from metadata.savepoint import Savepoint, SavepointVector

_LOGGER = get_logger(__name__)
_INT32_RANGE = (-(2**31), 2**31 - 1)

UpgradePolicy = Callable[[Path, Path], bool]


@dataclass
class LegacyUpgradeResult:
    """In-memory state reconstructed from legacy metadata.

    Attributes:
        global_meta_info: Global meta-info without reserved keys.
        field_map: Field declarations of the legacy fields table.
        savepoints: Savepoints with their field locators.
        archive: Binary archive holding the rebuilt slot tables.
    """

    global_meta_info: MetaInfoMap
    field_map: FieldMap
    savepoints: SavepointVector
    archive: BinaryArchive


def mtime_upgrade_policy(legacy_path: Path, current_path: Path) -> bool:
    """Decide whether legacy metadata still needs an upgrade.

    The upgrade is skipped when the current-schema file exists and was
    modified after the legacy file. Timestamps are a heuristic: clock skew
    or a touched file can cause a skipped or repeated upgrade.

    Raises:
        SerialboxFilesystemError: If file timestamps cannot be read.
    """
    try:
        if not current_path.exists():
            return True
        return not legacy_path.stat().st_mtime < current_path.stat().st_mtime
    except OSError as error:
        raise SerialboxFilesystemError(
            f"Failed to compare modification times of {legacy_path} and {current_path}: {error}."
        ) from error


def upgrade_legacy_metadata(
    mode: OpenMode,
    directory: Path,
    prefix: str,
    policy: UpgradePolicy = mtime_upgrade_policy,
) -> LegacyUpgradeResult | None:
    """Rebuild serializer state from legacy metadata when needed.

    Args:
        mode: Serializer open mode; upgrades require Read.
        directory: Dataset directory.
        prefix: Dataset prefix.
        policy: Decides whether an existing legacy file is upgraded.

    Returns:
        The reconstructed state, or ``None`` when no upgrade is needed.

    Raises:
        SerialboxModeError: If an upgrade is needed outside Read mode.
        SerialboxStructuralError: If the legacy document is ill-formed.
        SerialboxFilesystemError: If the legacy file cannot be read.
    """
    legacy_path = directory / LEGACY_METADATA_FILE_TEMPLATE.format(prefix=prefix)
    current_path = directory / METADATA_FILE_TEMPLATE.format(prefix=prefix)
    if not legacy_path.exists():
        return None
    _LOGGER.info("legacy_metadata_detected", path=str(legacy_path))
    if not policy(legacy_path, current_path):
        return None
    if mode is not OpenMode.READ:
        raise SerialboxModeError(
            "Old serialbox archives cannot be opened in 'Write' or 'Append' mode. "
            "Open the dataset in Read mode once to upgrade its metadata."
        )
    document = read_json_document(legacy_path)
    float_type = infer_float_type(document)
    _LOGGER.info("legacy_float_type_deduced", float_type=float_type.type_name)
    global_meta_info = _upgrade_global_meta_info(document, float_type)
    field_map = _upgrade_fields_table(document, float_type)
    archive = BinaryArchive(mode, directory, prefix, skip_metadata=True)
    savepoints = _upgrade_offset_table(document, float_type, field_map, archive)
    _LOGGER.info(
        "legacy_metadata_upgraded",
        path=str(legacy_path),
        field_count=len(field_map),
        savepoint_count=len(savepoints),
    )
    return LegacyUpgradeResult(
        global_meta_info=global_meta_info,
        field_map=field_map,
        savepoints=savepoints,
        archive=archive,
    )


def infer_float_type(document: Mapping[str, Any]) -> TypeID:
    """Guess the width of untyped floating point meta-info.

    The first declared field decides: ``float`` selects FLOAT32, anything
    else (or no field at all) FLOAT64.
    """
    fields_table = document.get(LEGACY_FIELDS_TABLE_KEY) or []
    if isinstance(fields_table, list) and fields_table and isinstance(fields_table[0], Mapping):
        if fields_table[0].get(LEGACY_ELEMENT_TYPE_KEY) == "float":
            return TypeID.FLOAT32
    return TypeID.FLOAT64


def _upgrade_global_meta_info(document: Mapping[str, Any], float_type: TypeID) -> MetaInfoMap:
    meta_info = MetaInfoMap()
    node = document.get(LEGACY_GLOBAL_META_INFO_KEY) or {}
    for key, value in _user_items(node, "global meta-info"):
        meta_info.insert(key, _legacy_value(value, float_type, f"global meta-info '{key}'"))
    return meta_info


def _upgrade_fields_table(document: Mapping[str, Any], float_type: TypeID) -> FieldMap:
    field_map = FieldMap()
    for field_node in _legacy_list(document, LEGACY_FIELDS_TABLE_KEY):
        name = str(_required(field_node, LEGACY_NAME_KEY, "fields table entry"))
        type_id = type_id_from_legacy_tag(
            str(_required(field_node, LEGACY_ELEMENT_TYPE_KEY, f"field '{name}'"))
        )
        dims = [
            _extent(_required(field_node, key, f"field '{name}'"), key, name)
            for key in LEGACY_DIMENSION_KEYS
        ]
        if LEGACY_OPTIONAL_DIMENSION_KEY in field_node:
            optional_extent = field_node[LEGACY_OPTIONAL_DIMENSION_KEY]
            dims.append(_extent(optional_extent, LEGACY_OPTIONAL_DIMENSION_KEY, name))
        meta_info = MetaInfoMap()
        for key, value in _user_items(field_node, f"field '{name}'"):
            context = f"meta-info '{key}' of field '{name}'"
            meta_info.insert(key, _legacy_value(value, float_type, context))
        if not field_map.insert(name, type_id, dims, meta_info):
            raise SerialboxStructuralError(
                f"failed to upgrade: field '{name}' is declared twice in the fields table"
            )
        _LOGGER.debug("legacy_field_upgraded", field_name=name, type=type_id.type_name, dims=dims)
    return field_map


def _upgrade_offset_table(
    document: Mapping[str, Any],
    float_type: TypeID,
    field_map: FieldMap,
    archive: BinaryArchive,
) -> SavepointVector:
    savepoints = SavepointVector()
    for entry in _legacy_list(document, LEGACY_OFFSET_TABLE_KEY):
        name = str(_required(entry, LEGACY_NAME_KEY, "offset table entry"))
        savepoint = Savepoint(name)
        for key, value in _user_items(entry, f"savepoint '{name}'"):
            savepoint.add_meta_info(
                key, _legacy_value(value, float_type, f"meta-info '{key}' of savepoint '{name}'")
            )
        index = savepoints.insert(savepoint)
        if index is None:
            raise SerialboxStructuralError(
                f"failed to upgrade: savepoint '{savepoint}' appears twice in the offset table"
            )
        offsets = entry.get(LEGACY_OFFSETS_KEY) or {}
        if not isinstance(offsets, Mapping):
            raise SerialboxStructuralError(
                f"failed to upgrade: '{LEGACY_OFFSETS_KEY}' of savepoint '{name}' "
                "is not a JSON object"
            )
        for field_name, location in offsets.items():
            size = _payload_size(field_map, field_name)
            field_id = archive.register_offset(field_name, _file_offset(location, field_name, size))
            savepoints.add_field(index, field_id)
            _LOGGER.debug("legacy_field_located", savepoint=str(savepoint), field_id=str(field_id))
    return savepoints


def _legacy_list(document: Mapping[str, Any], key: str) -> list[Any]:
    """Return the legacy table stored under ``key``; absent tables are empty."""
    table = document.get(key) or []
    if not isinstance(table, list):
        raise SerialboxStructuralError(f"failed to upgrade: '{key}' is not a JSON array")
    return table


def _extent(raw_extent: Any, key: str, field_name: str) -> int:
    if isinstance(raw_extent, bool) or not isinstance(raw_extent, int) or raw_extent < 0:
        raise SerialboxStructuralError(
            f"failed to upgrade: '{key}' of field '{field_name}' must be a non-negative "
            f"integer, got {raw_extent!r}"
        )
    return raw_extent


def _payload_size(field_map: FieldMap, field_name: str) -> int:
    """Return the byte size of one payload of a declared legacy field."""
    info = field_map.find(field_name)
    if info is None:
        raise SerialboxStructuralError(
            f"failed to upgrade: offset table references undeclared field '{field_name}'"
        )
    return math.prod(info.dims) * info.type_id.to_dtype().itemsize


def _user_items(node: Any, context: str) -> list[tuple[str, Any]]:
    """Return the non-reserved key/value pairs of a legacy object."""
    if not isinstance(node, Mapping):
        raise SerialboxStructuralError(f"failed to upgrade: {context} is not a JSON object")
    return [
        (str(key), value)
        for key, value in node.items()
        if not str(key).startswith(LEGACY_RESERVED_PREFIX)
    ]


def _legacy_value(value: Any, float_type: TypeID, context: str) -> MetaInfoValue:
    """Type an untyped legacy JSON value."""
    if isinstance(value, str):
        return MetaInfoValue(TypeID.STRING, value)
    if isinstance(value, bool):
        return MetaInfoValue(TypeID.BOOLEAN, value)
    if isinstance(value, int):
        low, high = _INT32_RANGE
        return MetaInfoValue(TypeID.INT32 if low <= value <= high else TypeID.INT64, value)
    if isinstance(value, float):
        return MetaInfoValue(float_type, value)
    raise SerialboxStructuralError(f"failed to upgrade: cannot deduce type of {context}")


def _required(node: Any, key: str, context: str) -> Any:
    if not isinstance(node, Mapping) or key not in node:
        raise SerialboxStructuralError(f"failed to upgrade: {context} lacks '{key}'")
    return node[key]


def _file_offset(location: Any, field_name: str, size: int) -> FileOffset:
    """Parse a legacy ``[offset, checksum]`` pair."""
    if not isinstance(location, list) or len(location) != 2:
        raise SerialboxStructuralError(
            f"failed to upgrade: offset of field '{field_name}' must be [offset, checksum]"
        )
    offset, checksum = location
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise SerialboxStructuralError(
            f"failed to upgrade: invalid byte offset {offset!r} of field '{field_name}'"
        )
    return FileOffset(offset=offset, checksum=str(checksum), size=size)
