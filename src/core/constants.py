"""Core constants used across Serialbox modules.

This module centralizes file names, document keys and defaults.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

SERIALBOX_VERSION_MAJOR = 2
SERIALBOX_VERSION_MINOR = 6
SERIALBOX_VERSION_PATCH = 1

DEFAULT_ARCHIVE_NAME = "Binary"
DEFAULT_LOG_LEVEL = "WARNING"
HASH_ALGORITHM = "sha256"

METADATA_FILE_TEMPLATE = "MetaData-{prefix}.json"
LEGACY_METADATA_FILE_TEMPLATE = "{prefix}.json"
ARCHIVE_METADATA_FILE_TEMPLATE = "ArchiveMetaData-{prefix}.json"
BINARY_DATA_FILE_TEMPLATE = "{prefix}_{field_name}.dat"

VERSION_KEY = "serialbox-format-version"
PREFIX_KEY = "prefix"
GLOBAL_META_INFO_KEY = "global-meta-info"
SAVEPOINT_LIST_KEY = "savepoint-list"
FIELD_MAP_KEY = "field-map"

NAME_KEY = "name"
META_INFO_KEY = "meta-info"
FIELD_OFFSETS_KEY = "field-offsets"
TYPE_KEY = "type"
SHAPE_KEY = "shape"
VALUE_KEY = "value"

BINARY_ARCHIVE_VERSION = 2
BINARY_ARCHIVE_VERSION_KEY = "binary-archive-version"
FIELDS_TABLE_KEY = "fields-table"

LEGACY_GLOBAL_META_INFO_KEY = "GlobalMetainfo"
LEGACY_FIELDS_TABLE_KEY = "FieldsTable"
LEGACY_OFFSET_TABLE_KEY = "OffsetTable"
LEGACY_NAME_KEY = "__name"
LEGACY_ELEMENT_TYPE_KEY = "__elementtype"
LEGACY_OFFSETS_KEY = "__offsets"
LEGACY_DIMENSION_KEYS = ("__isize", "__jsize", "__ksize")
LEGACY_OPTIONAL_DIMENSION_KEY = "__lsize"
LEGACY_RESERVED_PREFIX = "__"
