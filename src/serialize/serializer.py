"""Serializer orchestration.

The serializer owns the field registry, the savepoint registry, the
global meta-info and one archive backend. Every read and write is
validated against the registries before it reaches the archive, and the
metadata file ``MetaData-<prefix>.json`` is rewritten after each write.

At most one serializer may be open on a dataset directory and prefix at
a time. No lock file enforces this; concurrent instances, including ones
in other processes, corrupt the on-disk state.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy

from archive.archive_base import Archive
from archive.archive_factory import ArchiveFactory, default_archive_factory
from core.config import SerialboxConfig
from core.constants import (
    FIELD_MAP_KEY,
    GLOBAL_META_INFO_KEY,
    METADATA_FILE_TEMPLATE,
    PREFIX_KEY,
    SAVEPOINT_LIST_KEY,
    VERSION_KEY,
)
from core.errors import (
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
from core.json_io import read_json_document, write_json_document
from core.logging_config import get_logger
from core.type_id import TypeID
from core.types import OpenMode
from core.version import is_compatible, library_version, version_string
from metadata.field_map import FieldMap, FieldMetaInfo
from metadata.meta_info import MetaInfoMap
from metadata.savepoint import Savepoint, SavepointVector
from serialize.legacy_upgrade import (
    LegacyUpgradeResult,
    UpgradePolicy,
    mtime_upgrade_policy,
    upgrade_legacy_metadata,
)

_LOGGER = get_logger(__name__)


class Serializer:
    """Validated field storage against savepoints of one dataset."""

    def __init__(
        self,
        mode: OpenMode | str,
        directory: str | Path,
        prefix: str,
        archive_name: str | None = None,
        *,
        archive_factory: ArchiveFactory | None = None,
        upgrade_policy: UpgradePolicy | None = None,
        config: SerialboxConfig | None = None,
    ) -> None:
        """Open a dataset.

        Args:
            mode: Read, Write or Append; fixed for the serializer's lifetime.
            directory: Dataset directory; created by Write and Append.
            prefix: Dataset prefix naming all files of the dataset.
            archive_name: Backend name; the configured default when omitted.
            archive_factory: Backend registry; a default factory when omitted.
            upgrade_policy: Decides whether legacy metadata is upgraded.
            config: Runtime configuration; read from the environment when omitted.

        Raises:
            SerialboxModeError: If legacy metadata is opened for writing.
            SerialboxStructuralError: If the metadata file is malformed.
            SerialboxFilesystemError: If the dataset cannot be accessed.
            SerialboxConfigError: If the archive backend is unknown.
        """
        self._config = config or SerialboxConfig.from_env()
        self._mode = OpenMode(mode)
        self._directory = Path(directory)
        self._prefix = prefix
        self._metadata_path = self._directory / METADATA_FILE_TEMPLATE.format(prefix=prefix)
        self._field_map = FieldMap()
        self._savepoints = SavepointVector()
        self._global_meta_info = MetaInfoMap()
        _LOGGER.info(
            "serializer_opening",
            mode=self._mode.value,
            directory=str(self._directory),
            prefix=prefix,
        )
        if self._mode is OpenMode.READ and not self._directory.is_dir():
            raise SerialboxFilesystemError(
                f"Cannot create Serializer: directory {self._directory} does not exist."
            )
        upgrade = None
        if self._config.legacy_upgrade:
            upgrade = upgrade_legacy_metadata(
                self._mode,
                self._directory,
                prefix,
                upgrade_policy or mtime_upgrade_policy,
            )
        if upgrade is None:
            self._construct_meta_data_from_file()
            factory = archive_factory or default_archive_factory()
            self._archive: Archive = factory.create(
                archive_name or self._config.archive_name,
                self._mode,
                self._directory,
                prefix,
            )
        else:
            self._adopt_upgrade(upgrade)
        if self._mode is OpenMode.WRITE:
            self.clear()

    @property
    def mode(self) -> OpenMode:
        return self._mode

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def metadata_path(self) -> Path:
        return self._metadata_path

    @property
    def archive(self) -> Archive:
        return self._archive

    @property
    def global_meta_info(self) -> MetaInfoMap:
        """Copy of the global meta-info."""
        return self._global_meta_info.copy()

    def add_global_meta_info(self, key: str, value: Any) -> None:
        """Attach global meta-info and persist the metadata.

        Raises:
            SerialboxModeError: If the serializer is open for reading.
            SerialboxStructuralError: If ``key`` already exists.
        """
        self._require_writable("add global meta-info")
        if not self._global_meta_info.insert(key, value):
            raise SerialboxStructuralError(
                f"Cannot add global meta-info: key '{key}' already exists."
            )
        self.update_meta_data()

    def register_field(
        self,
        name: str,
        type_id: TypeID,
        dims: Sequence[int],
        meta_info: MetaInfoMap | Mapping[str, Any] | None = None,
    ) -> None:
        """Declare a field before its first write.

        Raises:
            SerialboxModeError: If the serializer is open for reading.
            SerialboxDuplicateFieldError: If ``name`` is already declared.
        """
        self._require_writable("register a field")
        if isinstance(meta_info, MetaInfoMap):
            field_meta_info = meta_info
        else:
            field_meta_info = MetaInfoMap(meta_info)
        if not self._field_map.insert(name, TypeID(type_id), dims, field_meta_info):
            raise SerialboxDuplicateFieldError(
                f"Field '{name}' is already registered within the Serializer."
            )
        self.update_meta_data()

    def has_field(self, name: str) -> bool:
        return name in self._field_map

    def field_names(self) -> list[str]:
        """Return registered field names; order carries no meaning."""
        return self._field_map.names()

    def get_field_meta_info(self, name: str) -> FieldMetaInfo:
        """Return the declaration of field ``name``.

        Raises:
            SerialboxUnknownFieldError: If ``name`` is not registered.
        """
        info = self._field_map.find(name)
        if info is None:
            raise SerialboxUnknownFieldError(
                f"Field '{name}' is not registered within the Serializer."
            )
        return info

    def savepoints(self) -> list[Savepoint]:
        return self._savepoints.savepoints()

    def has_savepoint(self, savepoint: Savepoint) -> bool:
        return self._savepoints.find(savepoint) is not None

    def fields_at(self, savepoint: Savepoint) -> list[str]:
        """Return the names of fields written at ``savepoint``.

        Raises:
            SerialboxUnknownSavepointError: If ``savepoint`` does not exist.
        """
        return self._savepoints.fields_at(self._require_savepoint(savepoint))

    def write(self, name: str, savepoint: Savepoint, array: numpy.ndarray) -> None:
        """Store ``array`` as field ``name`` at ``savepoint``.

        Unknown fields are registered from the array's type and shape.
        If the archive write or the metadata update fails, the registries
        and the archive's slot table are left as they were.

        Raises:
            SerialboxModeError: If the serializer is open for reading.
            SerialboxTypeMismatchError: If the array type disagrees.
            SerialboxShapeMismatchError: If the array shape disagrees.
            SerialboxDuplicateFieldError: If ``name`` already exists at
                ``savepoint``.
        """
        _LOGGER.info("field_serializing", field_name=name, savepoint=str(savepoint))
        if self._mode is OpenMode.READ:
            raise SerialboxModeError(
                "Serializer not open in write mode, but write operation requested."
            )
        _require_array(array)
        new_field_type = None
        if name in self._field_map:
            self._check_array(name, array)
        else:
            new_field_type = TypeID.from_dtype(array.dtype)
        savepoint_index = self._savepoints.find(savepoint)
        if savepoint_index is not None and self._savepoints.has_field(savepoint_index, name):
            raise SerialboxDuplicateFieldError(
                f"Field '{name}' already saved at savepoint '{savepoint}'."
            )
        field_id = self._archive.write(array, name)
        if new_field_type is not None:
            self._field_map.insert(name, new_field_type, array.shape)
        savepoint_created = savepoint_index is None
        if savepoint_index is None:
            savepoint_index = self._savepoints.insert(savepoint)
        self._savepoints.add_field(savepoint_index, field_id)
        try:
            self.update_meta_data()
        except SerialboxError:
            self._savepoints.remove_field(savepoint_index, name)
            if savepoint_created:
                self._savepoints.remove_last()
            if new_field_type is not None:
                self._field_map.remove(name)
            self._archive.discard(field_id)
            _LOGGER.warning("field_write_rolled_back", field_name=name, savepoint=str(savepoint))
            raise
        if new_field_type is not None:
            _LOGGER.info("field_registered", field_name=name, dims=list(array.shape))
        if savepoint_created:
            _LOGGER.info("savepoint_registered", savepoint=str(savepoint))
        _LOGGER.info("field_serialized", field_name=name, field_id=str(field_id))

    def read(self, name: str, savepoint: Savepoint, array: numpy.ndarray) -> None:
        """Fill ``array`` in place with field ``name`` at ``savepoint``.

        Raises:
            SerialboxModeError: If the serializer is not open for reading.
            SerialboxUnknownFieldError: If the field is unknown or was not
                written at ``savepoint``.
            SerialboxUnknownSavepointError: If ``savepoint`` does not exist.
            SerialboxTypeMismatchError: If the array type disagrees.
            SerialboxShapeMismatchError: If the array shape disagrees.
        """
        _LOGGER.info("field_deserializing", field_name=name, savepoint=str(savepoint))
        if self._mode is not OpenMode.READ:
            raise SerialboxModeError(
                "Serializer not open in read mode, but read operation requested."
            )
        _require_array(array)
        self._check_array(name, array)
        if not array.flags.writeable:
            raise SerialboxTypeMismatchError(
                f"Cannot read field '{name}' into a read-only array. Pass a writeable array."
            )
        savepoint_index = self._require_savepoint(savepoint)
        field_id = self._savepoints.get_field_id(savepoint_index, name)
        if field_id is None:
            raise SerialboxUnknownFieldError(
                f"Field '{name}' was not written at savepoint '{savepoint}'."
            )
        self._archive.read(array, field_id)
        _LOGGER.info("field_deserialized", field_name=name, field_id=str(field_id))

    def read_array(self, name: str, savepoint: Savepoint) -> numpy.ndarray:
        """Return a new array holding field ``name`` at ``savepoint``."""
        info = self.get_field_meta_info(name)
        array = numpy.empty(info.dims, dtype=info.type_id.to_dtype())
        self.read(name, savepoint, array)
        return array

    def clear(self) -> None:
        """Drop every field, savepoint and meta-info of the dataset.

        Raises:
            SerialboxModeError: If the serializer is open for reading.
        """
        self._require_writable("clear the dataset")
        self._savepoints.clear()
        self._field_map.clear()
        self._global_meta_info.clear()
        self._archive.clear()
        self.update_meta_data()
        _LOGGER.info("serializer_cleared", directory=str(self._directory), prefix=self._prefix)

    def update_meta_data(self) -> None:
        """Rewrite the metadata file and the archive index.

        The file is overwritten in place; a crash mid-write can leave it
        truncated.
        """
        write_json_document(self._metadata_path, self.to_document())
        self._archive.update_meta_data()

    def to_document(self) -> dict[str, Any]:
        """Return the current-schema metadata document."""
        return {
            VERSION_KEY: library_version(),
            PREFIX_KEY: self._prefix,
            GLOBAL_META_INFO_KEY: self._global_meta_info.to_document(),
            SAVEPOINT_LIST_KEY: self._savepoints.to_document(),
            FIELD_MAP_KEY: self._field_map.to_document().get(FIELD_MAP_KEY, {}),
        }

    def from_document(self, document: Mapping[str, Any] | None) -> None:
        """Replace the registries with the content of ``document``.

        An absent or empty document yields an empty state. State is only
        replaced once the whole document has been validated.

        Raises:
            SerialboxStructuralError: If a key is missing, the version is
                incompatible or the prefix differs.
        """
        global_meta_info = MetaInfoMap()
        savepoints = SavepointVector()
        field_map = FieldMap()
        if document:
            for required_key in (
                VERSION_KEY,
                PREFIX_KEY,
                GLOBAL_META_INFO_KEY,
                SAVEPOINT_LIST_KEY,
                FIELD_MAP_KEY,
            ):
                if required_key not in document:
                    raise SerialboxStructuralError(f"node '{required_key}' not found")
            _check_version(document[VERSION_KEY])
            if document[PREFIX_KEY] != self._prefix:
                raise SerialboxStructuralError(
                    f"inconsistent prefixes: expected '{self._prefix}' got '{document[PREFIX_KEY]}'"
                )
            global_meta_info.from_document(document[GLOBAL_META_INFO_KEY])
            savepoints.from_document(document[SAVEPOINT_LIST_KEY])
            field_map.from_document({FIELD_MAP_KEY: document[FIELD_MAP_KEY]})
        self._global_meta_info = global_meta_info
        self._savepoints = savepoints
        self._field_map = field_map

    def _construct_meta_data_from_file(self) -> None:
        """Load the metadata file; a missing file is only legal when writing."""
        if not self._metadata_path.exists():
            if self._mode is OpenMode.READ:
                raise SerialboxFilesystemError(
                    f"Cannot create Serializer: {self._metadata_path.name} not found in "
                    f"{self._directory}."
                )
            return
        document = read_json_document(self._metadata_path)
        try:
            self.from_document(document)
        except SerialboxStructuralError as error:
            raise SerialboxStructuralError(
                f"error while parsing {self._metadata_path}: {error}"
            ) from error

    def _adopt_upgrade(self, upgrade: LegacyUpgradeResult) -> None:
        """Take over upgraded state and try to persist it in the current schema."""
        self._global_meta_info = upgrade.global_meta_info
        self._field_map = upgrade.field_map
        self._savepoints = upgrade.savepoints
        self._archive = upgrade.archive
        try:
            self.update_meta_data()
        except SerialboxFilesystemError as error:
            _LOGGER.warning(
                "legacy_upgrade_persist_failed",
                path=str(self._metadata_path),
                error=str(error),
            )

    def _check_array(self, name: str, array: numpy.ndarray) -> None:
        """Validate ``array`` against the declaration of ``name``."""
        info = self.get_field_meta_info(name)
        offered_type = TypeID.from_dtype(array.dtype)
        if offered_type is not info.type_id:
            raise SerialboxTypeMismatchError(
                f"Field '{name}' has type '{offered_type.type_name}' but was registered as "
                f"type '{info.type_id.type_name}'."
            )
        if tuple(array.shape) != info.dims:
            raise SerialboxShapeMismatchError(
                f"Dimensions of field '{name}' do not match registered ones: "
                f"registered as [{_render_dims(info.dims)}], given as "
                f"[{_render_dims(array.shape)}]."
            )

    def _require_savepoint(self, savepoint: Savepoint) -> int:
        index = self._savepoints.find(savepoint)
        if index is None:
            raise SerialboxUnknownSavepointError(f"Savepoint '{savepoint}' does not exist.")
        return index

    def _require_writable(self, action: str) -> None:
        if self._mode is OpenMode.READ:
            raise SerialboxModeError(
                f"Serializer not open in write mode, cannot {action}."
            )

    def __repr__(self) -> str:
        return (
            f"Serializer(mode={self._mode.value}, directory={self._directory}, "
            f"prefix={self._prefix!r}, fields={len(self._field_map)}, "
            f"savepoints={len(self._savepoints)})"
        )


def _check_version(raw_version: Any) -> None:
    if isinstance(raw_version, bool) or not isinstance(raw_version, int):
        raise SerialboxStructuralError(f"invalid format version {raw_version!r}")
    if not is_compatible(raw_version):
        raise SerialboxStructuralError(
            f"serialbox version of MetaData ({version_string(raw_version)}) does not match "
            f"the version of the library ({version_string(library_version())})"
        )


def _require_array(array: Any) -> None:
    if not isinstance(array, numpy.ndarray):
        raise SerialboxTypeMismatchError(
            f"Field data must be a numpy.ndarray, got {type(array).__name__}."
        )


def _render_dims(dims: Sequence[int]) -> str:
    return ", ".join(str(extent) for extent in dims)
