"""Content-addressed binary archive.

Each field owns an append-only data file ``<prefix>_<field>.dat`` and
an append-only slot table of ``(byte offset, checksum, size)`` entries kept in
``ArchiveMetaData-<prefix>.json``. A payload whose checksum already sits
in the field's table reuses that slot, so repeated snapshots of unchanged
data cost no additional disk space.

Slot table invariant: the first slot of a field starts its data file and
therefore has byte offset 0; every later slot has a non-zero offset.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Mapping

import numpy

from core.constants import (
    ARCHIVE_METADATA_FILE_TEMPLATE,
    BINARY_ARCHIVE_VERSION,
    BINARY_ARCHIVE_VERSION_KEY,
    BINARY_DATA_FILE_TEMPLATE,
    FIELDS_TABLE_KEY,
    HASH_ALGORITHM,
    PREFIX_KEY,
)
from core.errors import (
    SerialboxFilesystemError,
    SerialboxModeError,
    SerialboxStructuralError,
)
from core.json_io import read_json_document, write_json_document
from core.logging_config import get_logger
from core.types import FieldID, FileOffset, OpenMode

_LOGGER = get_logger(__name__)


class BinaryArchive:
    """Archive storing raw field payloads deduplicated by checksum."""

    NAME = "Binary"

    def __init__(
        self,
        mode: OpenMode,
        directory: Path,
        prefix: str,
        skip_metadata: bool = False,
    ) -> None:
        """Open the archive in ``directory``.

        Args:
            mode: Serializer open mode.
            directory: Dataset directory, created unless reading.
            prefix: Dataset prefix shared by all files of the dataset.
            skip_metadata: Start from an empty slot table instead of
                loading the index file (used by the legacy upgrade).

        Raises:
            SerialboxFilesystemError: If the directory is unusable.
            SerialboxStructuralError: If the index file is malformed.
        """
        self._mode = OpenMode(mode)
        self._directory = Path(directory)
        self._prefix = prefix
        self._metadata_path = self._directory / ARCHIVE_METADATA_FILE_TEMPLATE.format(
            prefix=prefix
        )
        self._field_table: dict[str, list[FileOffset]] = {}
        self._last_appended: FieldID | None = None
        _prepare_directory(self._directory, self._mode)
        if not skip_metadata:
            self._read_meta_data()

    @property
    def field_table(self) -> dict[str, tuple[FileOffset, ...]]:
        """Snapshot of the per-field slot tables."""
        return {name: tuple(table) for name, table in self._field_table.items()}

    def write(self, array: numpy.ndarray, field_name: str) -> FieldID:
        """Store ``array`` under ``field_name`` and return its locator.

        Raises:
            SerialboxModeError: If the archive is open for reading.
            SerialboxFilesystemError: If the data file cannot be written.
        """
        if self._mode is OpenMode.READ:
            raise SerialboxModeError(
                "Archive not open in write mode, but write operation requested."
            )
        self._last_appended = None
        payload = numpy.ascontiguousarray(array).tobytes()
        checksum = compute_checksum(payload)
        table = self._field_table.get(field_name)
        if table is not None:
            slot = _find_slot(table, checksum)
            if slot is not None:
                _LOGGER.debug("payload_deduplicated", field_name=field_name, slot=slot)
                return FieldID(name=field_name, slot=slot)
        offset = self._append_payload(field_name, payload, first_slot=table is None)
        self._field_table.setdefault(field_name, []).append(
            FileOffset(offset=offset, checksum=checksum, size=len(payload))
        )
        slot = len(self._field_table[field_name]) - 1
        field_id = FieldID(name=field_name, slot=slot)
        self._last_appended = field_id
        _LOGGER.debug(
            "payload_appended",
            field_name=field_name,
            slot=slot,
            offset=offset,
            size=len(payload),
        )
        return field_id

    def read(self, array: numpy.ndarray, field_id: FieldID) -> None:
        """Fill ``array`` in place with the payload at ``field_id``.

        Raises:
            SerialboxStructuralError: If the locator is unknown or the
                stored payload size differs from ``array``.
            SerialboxFilesystemError: If the data file cannot be read.
        """
        table = self._field_table.get(field_id.name)
        if table is None:
            raise SerialboxStructuralError(
                f"Field '{field_id.name}' is not stored in binary archive {self._metadata_path}."
            )
        if not 0 <= field_id.slot < len(table):
            raise SerialboxStructuralError(
                f"Invalid locator {field_id}: field '{field_id.name}' has {len(table)} slot(s)."
            )
        entry = table[field_id.slot]
        if entry.size != array.nbytes:
            raise SerialboxStructuralError(
                f"Stored payload of {field_id} holds {entry.size} bytes, but the destination "
                f"needs {array.nbytes}. Read into an array of the registered type and shape."
            )
        data_path = self._data_path(field_id.name)
        offset = entry.offset
        try:
            with data_path.open("rb") as handle:
                handle.seek(offset)
                payload = handle.read(array.nbytes)
        except OSError as error:
            raise SerialboxFilesystemError(
                f"Failed to read field '{field_id.name}' from {data_path}: {error}."
            ) from error
        if len(payload) != array.nbytes:
            raise SerialboxStructuralError(
                f"Data file {data_path} ends inside the payload of {field_id}: "
                f"read {len(payload)} of {array.nbytes} bytes."
            )
        array[...] = numpy.frombuffer(payload, dtype=array.dtype).reshape(array.shape)

    def register_offset(self, field_name: str, file_offset: FileOffset) -> FieldID:
        """Record an existing payload location without touching data files.

        Applies the same checksum deduplication as ``write``.

        Raises:
            SerialboxStructuralError: If the offset breaks the slot table
                invariant of the module.
        """
        table = self._field_table.get(field_name)
        if table is None:
            if file_offset.offset != 0:
                raise SerialboxStructuralError(
                    f"First slot of field '{field_name}' must start at byte 0, "
                    f"got {file_offset.offset}."
                )
            self._field_table[field_name] = [file_offset]
            return FieldID(name=field_name, slot=0)
        slot = _find_slot(table, file_offset.checksum)
        if slot is not None:
            return FieldID(name=field_name, slot=slot)
        if file_offset.offset == 0:
            raise SerialboxStructuralError(
                f"Slot {len(table)} of field '{field_name}' claims byte offset 0, "
                "which only the first slot may use."
            )
        table.append(file_offset)
        return FieldID(name=field_name, slot=len(table) - 1)

    def discard(self, field_id: FieldID) -> None:
        """Drop the slot created by the latest ``write`` if it is ``field_id``.

        Payload bytes already appended stay in the data file; later slots
        are appended after them. Any other locator is left untouched.
        """
        if field_id != self._last_appended:
            return
        table = self._field_table[field_id.name]
        table.pop()
        if not table:
            del self._field_table[field_id.name]
        self._last_appended = None
        _LOGGER.debug("payload_discarded", field_id=str(field_id))

    def clear(self) -> None:
        """Drop every data file, the index file and the in-memory table.

        Raises:
            SerialboxModeError: If the archive is open for reading.
            SerialboxFilesystemError: If a file cannot be removed.
        """
        if self._mode is OpenMode.READ:
            raise SerialboxModeError("Archive not open in write mode, but clear requested.")
        paths = [self._data_path(name) for name in self._field_table] + [self._metadata_path]
        for file_path in paths:
            try:
                file_path.unlink(missing_ok=True)
            except OSError as error:
                raise SerialboxFilesystemError(
                    f"Failed to remove archive file {file_path}: {error}."
                ) from error
        self._field_table.clear()
        self._last_appended = None

    def update_meta_data(self) -> None:
        """Rewrite the whole index file from the in-memory slot tables."""
        write_json_document(self._metadata_path, self.to_document())

    def to_document(self) -> dict[str, Any]:
        return {
            BINARY_ARCHIVE_VERSION_KEY: BINARY_ARCHIVE_VERSION,
            PREFIX_KEY: self._prefix,
            FIELDS_TABLE_KEY: {
                name: [[entry.offset, entry.checksum, entry.size] for entry in table]
                for name, table in self._field_table.items()
            },
        }

    def _read_meta_data(self) -> None:
        """Load the slot tables from the index file when it exists."""
        if not self._metadata_path.exists():
            return
        document = read_json_document(self._metadata_path)
        if not document:
            return
        try:
            self._field_table = _field_table_from_document(document, self._prefix)
        except SerialboxStructuralError as error:
            raise SerialboxStructuralError(
                f"error while parsing {self._metadata_path}: {error}"
            ) from error

    def _append_payload(self, field_name: str, payload: bytes, first_slot: bool) -> int:
        """Append ``payload`` to the field's data file and return its offset."""
        data_path = self._data_path(field_name)
        try:
            with data_path.open("wb" if first_slot else "ab") as handle:
                offset = handle.tell()
                handle.write(payload)
        except OSError as error:
            raise SerialboxFilesystemError(
                f"Failed to write field '{field_name}' to {data_path}: {error}. "
                "Check write permissions and available disk space."
            ) from error
        return offset

    def _data_path(self, field_name: str) -> Path:
        return self._directory / BINARY_DATA_FILE_TEMPLATE.format(
            prefix=self._prefix, field_name=field_name
        )

    def __repr__(self) -> str:
        return (
            f"BinaryArchive(mode={self._mode.value}, directory={self._directory}, "
            f"prefix={self._prefix!r}, fields={len(self._field_table)})"
        )


def compute_checksum(payload: bytes) -> str:
    """Return the hex digest identifying ``payload``."""
    hasher = hashlib.new(HASH_ALGORITHM)
    hasher.update(payload)
    return hasher.hexdigest()


def _find_slot(table: list[FileOffset], checksum: str) -> int | None:
    for slot, entry in enumerate(table):
        if entry.checksum == checksum:
            return slot
    return None


def _prepare_directory(directory: Path, mode: OpenMode) -> None:
    """Validate or create the dataset directory for ``mode``."""
    if mode is OpenMode.READ:
        if not directory.is_dir():
            raise SerialboxFilesystemError(
                f"Cannot open binary archive: directory {directory} does not exist."
            )
        return
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as error:
        raise SerialboxFilesystemError(
            f"Failed to create dataset directory {directory}: {error}."
        ) from error


def _field_table_from_document(
    document: Mapping[str, Any], prefix: str
) -> dict[str, list[FileOffset]]:
    """Parse and validate the index document."""
    version = document.get(BINARY_ARCHIVE_VERSION_KEY)
    if version != BINARY_ARCHIVE_VERSION:
        raise SerialboxStructuralError(
            f"unsupported binary archive version {version!r}, expected {BINARY_ARCHIVE_VERSION}"
        )
    if document.get(PREFIX_KEY) != prefix:
        raise SerialboxStructuralError(
            f"inconsistent prefixes: expected '{prefix}' got '{document.get(PREFIX_KEY)}'"
        )
    table_nodes = document.get(FIELDS_TABLE_KEY) or {}
    if not isinstance(table_nodes, Mapping):
        raise SerialboxStructuralError(f"'{FIELDS_TABLE_KEY}' must be an object")
    field_table: dict[str, list[FileOffset]] = {}
    for name, entries in table_nodes.items():
        try:
            field_table[str(name)] = [
                FileOffset(offset=int(offset), checksum=str(checksum), size=int(size))
                for offset, checksum, size in entries
            ]
        except (TypeError, ValueError) as error:
            raise SerialboxStructuralError(
                f"slot table of field '{name}' is ill-formed: {error}"
            ) from error
    return field_table
