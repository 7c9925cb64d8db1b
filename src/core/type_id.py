"""Closed element type set shared by fields and meta-info values.

This module maps type ids onto their document names, numpy dtypes
and the element type tags used by legacy metadata files.
"""

from __future__ import annotations

from enum import IntEnum

import numpy

from core.errors import SerialboxTypeMismatchError


class TypeID(IntEnum):
    """Element type of a field or meta-info value."""

    BOOLEAN = 1
    INT32 = 2
    INT64 = 3
    FLOAT32 = 4
    FLOAT64 = 5
    STRING = 6

    @property
    def type_name(self) -> str:
        """Stable name used in metadata documents."""
        return _TYPE_NAMES[self]

    @classmethod
    def from_name(cls, name: str) -> "TypeID":
        """Resolve a document type name.

        Args:
            name: Type name such as ``float64``.

        Returns:
            Matching type id.

        Raises:
            SerialboxTypeMismatchError: If the name is unknown.
        """
        for type_id, type_name in _TYPE_NAMES.items():
            if type_name == name:
                return type_id
        supported = ", ".join(_TYPE_NAMES.values())
        raise SerialboxTypeMismatchError(
            f"Unknown type name '{name}'. Expected one of: {supported}."
        )

    @classmethod
    def from_dtype(cls, dtype: numpy.dtype) -> "TypeID":
        """Resolve the type id of a numpy dtype.

        Raises:
            SerialboxTypeMismatchError: If the dtype cannot back a field.
        """
        normalized = numpy.dtype(dtype)
        for type_id, field_dtype in _FIELD_DTYPES.items():
            if normalized == field_dtype:
                return type_id
        raise SerialboxTypeMismatchError(
            f"Unsupported field dtype '{normalized}'. "
            "Use one of bool, int32, int64, float32 or float64 arrays."
        )

    def to_dtype(self) -> numpy.dtype:
        """Return the numpy dtype backing fields of this type.

        Raises:
            SerialboxTypeMismatchError: For STRING, which has no field dtype.
        """
        if self not in _FIELD_DTYPES:
            raise SerialboxTypeMismatchError(
                f"Type '{self.type_name}' cannot be used as a field element type."
            )
        return _FIELD_DTYPES[self]


def type_id_from_legacy_tag(tag: str) -> TypeID:
    """Map a legacy ``__elementtype`` tag onto a type id.

    Unrecognised tags fall back to FLOAT64.
    """
    return _LEGACY_TAGS.get(tag, TypeID.FLOAT64)


_TYPE_NAMES = {
    TypeID.BOOLEAN: "bool",
    TypeID.INT32: "int32",
    TypeID.INT64: "int64",
    TypeID.FLOAT32: "float32",
    TypeID.FLOAT64: "float64",
    TypeID.STRING: "string",
}

_FIELD_DTYPES = {
    TypeID.BOOLEAN: numpy.dtype(numpy.bool_),
    TypeID.INT32: numpy.dtype(numpy.int32),
    TypeID.INT64: numpy.dtype(numpy.int64),
    TypeID.FLOAT32: numpy.dtype(numpy.float32),
    TypeID.FLOAT64: numpy.dtype(numpy.float64),
}

_LEGACY_TAGS = {
    "int": TypeID.INT32,
    "float": TypeID.FLOAT32,
    "double": TypeID.FLOAT64,
}
