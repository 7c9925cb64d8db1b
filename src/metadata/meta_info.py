"""Typed key/value meta-information.

This module defines the closed variant used for user metadata and the
map that attaches it to the archive, to fields and to savepoints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping

import numpy

from core.constants import TYPE_KEY, VALUE_KEY
from core.errors import SerialboxStructuralError, SerialboxTypeMismatchError
from core.type_id import TypeID

_INT32_RANGE = (-(2**31), 2**31 - 1)
_INT64_RANGE = (-(2**63), 2**63 - 1)


@dataclass(frozen=True)
class MetaInfoValue:
    """Dynamically typed scalar or fixed-size array.

    The type id is fixed at creation. Values are validated and normalized
    once so that equal inputs compare equal after a document round-trip.

    Attributes:
        type_id: Element type of the value.
        value: Python scalar, or a tuple of scalars for arrays.
        is_array: Whether ``value`` holds several elements.
    """

    type_id: TypeID
    value: Any
    is_array: bool = False

    def __post_init__(self) -> None:
        type_id = TypeID(self.type_id)
        object.__setattr__(self, "type_id", type_id)
        if self.is_array:
            if not isinstance(self.value, (list, tuple, numpy.ndarray)):
                raise SerialboxTypeMismatchError(
                    f"Array meta-info of type '{type_id.type_name}' needs a sequence, "
                    f"got {type(self.value).__name__}."
                )
            normalized = tuple(_coerce_scalar(type_id, item) for item in self.value)
        else:
            normalized = _coerce_scalar(type_id, self.value)
        object.__setattr__(self, "value", normalized)

    @classmethod
    def infer(cls, value: Any) -> "MetaInfoValue":
        """Build a value whose type is inferred from a Python or numpy object.

        Raises:
            SerialboxTypeMismatchError: If no type in the closed set fits.
        """
        if isinstance(value, MetaInfoValue):
            return value
        if isinstance(value, (list, tuple)):
            if not value:
                raise SerialboxTypeMismatchError(
                    "Cannot infer the element type of an empty meta-info array."
                )
            element_types = {_infer_type_id(item) for item in value}
            if len(element_types) != 1:
                raise SerialboxTypeMismatchError(
                    "Meta-info arrays must hold elements of one type, got "
                    f"{sorted(type_id.type_name for type_id in element_types)}."
                )
            return cls(element_types.pop(), tuple(value), is_array=True)
        return cls(_infer_type_id(value), value)

    def to_document(self) -> dict[str, Any]:
        """Return the ``{"type", "value"}`` document form."""
        value = list(self.value) if self.is_array else self.value
        return {TYPE_KEY: self.type_id.type_name, VALUE_KEY: value}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "MetaInfoValue":
        """Rebuild a value from its document form.

        Raises:
            SerialboxStructuralError: If the document is ill-formed.
        """
        if not isinstance(document, Mapping) or TYPE_KEY not in document:
            raise SerialboxStructuralError(
                f"Meta-info value document needs '{TYPE_KEY}' and '{VALUE_KEY}', got {document!r}."
            )
        if VALUE_KEY not in document:
            raise SerialboxStructuralError(f"Meta-info value document lacks '{VALUE_KEY}'.")
        type_id = TypeID.from_name(str(document[TYPE_KEY]))
        raw_value = document[VALUE_KEY]
        return cls(type_id, raw_value, is_array=isinstance(raw_value, list))

    def __str__(self) -> str:
        if self.is_array:
            return "[" + ", ".join(_render_scalar(item) for item in self.value) + "]"
        return _render_scalar(self.value)


class MetaInfoMap:
    """Mapping from string key to ``MetaInfoValue``.

    Keys are unique; equality ignores insertion order.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, MetaInfoValue] = {}
        for key, value in (values or {}).items():
            if not self.insert(key, value):
                raise SerialboxStructuralError(f"Duplicate meta-info key '{key}'.")

    def insert(self, key: str, value: Any) -> bool:
        """Insert ``value`` under ``key``.

        Plain Python values are converted with ``MetaInfoValue.infer``.

        Returns:
            ``False`` without mutation when ``key`` already exists.
        """
        if key in self._values:
            return False
        self._values[key] = MetaInfoValue.infer(value)
        return True

    def get(self, key: str) -> MetaInfoValue | None:
        """Return the value stored under ``key`` or ``None``."""
        return self._values.get(key)

    def keys(self) -> list[str]:
        return list(self._values)

    def items(self) -> list[tuple[str, MetaInfoValue]]:
        return list(self._values.items())

    def as_dict(self) -> dict[str, Any]:
        """Return plain Python values keyed by meta-info key."""
        return {key: value.value for key, value in self._values.items()}

    def clear(self) -> None:
        self._values.clear()

    def copy(self) -> "MetaInfoMap":
        duplicate = MetaInfoMap()
        duplicate._values = dict(self._values)
        return duplicate

    def to_document(self) -> dict[str, Any]:
        """Return the document form keyed by meta-info key."""
        return {key: value.to_document() for key, value in self._values.items()}

    def from_document(self, document: Mapping[str, Any] | None) -> None:
        """Replace the content with the values of ``document``.

        Raises:
            SerialboxStructuralError: If the document is ill-formed.
        """
        self.clear()
        if not document:
            return
        if not isinstance(document, Mapping):
            raise SerialboxStructuralError(
                f"Meta-info document must be an object, got {type(document).__name__}."
            )
        for key, value_document in document.items():
            try:
                self._values[str(key)] = MetaInfoValue.from_document(value_document)
            except SerialboxTypeMismatchError as error:
                raise SerialboxStructuralError(
                    f"Cannot load meta-info '{key}': {error}"
                ) from error

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MetaInfoMap):
            return NotImplemented
        return self._values == other._values

    def __repr__(self) -> str:
        rendered = ", ".join(f"{key}: {value}" for key, value in sorted(self._values.items()))
        return "{" + rendered + "}"


def _infer_type_id(value: Any) -> TypeID:
    """Infer the closed type of one scalar."""
    if isinstance(value, (bool, numpy.bool_)):
        return TypeID.BOOLEAN
    if isinstance(value, numpy.integer):
        return TypeID.INT64 if value.dtype.itemsize > 4 else TypeID.INT32
    if isinstance(value, int):
        low, high = _INT32_RANGE
        return TypeID.INT32 if low <= value <= high else TypeID.INT64
    if isinstance(value, numpy.float32):
        return TypeID.FLOAT32
    if isinstance(value, (float, numpy.floating)):
        return TypeID.FLOAT64
    if isinstance(value, str):
        return TypeID.STRING
    raise SerialboxTypeMismatchError(
        f"Cannot infer meta-info type of {type(value).__name__} value {value!r}. "
        "Use bool, int, float, str or a list of one of these."
    )


def _coerce_scalar(type_id: TypeID, value: Any) -> Any:
    """Validate one scalar against ``type_id`` and normalize it."""
    if type_id is TypeID.BOOLEAN:
        if isinstance(value, (bool, numpy.bool_)):
            return bool(value)
    elif type_id in (TypeID.INT32, TypeID.INT64):
        if isinstance(value, (int, numpy.integer)) and not isinstance(value, (bool, numpy.bool_)):
            low, high = _INT32_RANGE if type_id is TypeID.INT32 else _INT64_RANGE
            if low <= int(value) <= high:
                return int(value)
            raise SerialboxTypeMismatchError(
                f"Value {value} does not fit into meta-info type '{type_id.type_name}'."
            )
    elif type_id is TypeID.FLOAT32:
        if _is_real(value):
            return float(numpy.float32(value))
    elif type_id is TypeID.FLOAT64:
        if _is_real(value):
            return float(value)
    elif isinstance(value, str):
        return value
    raise SerialboxTypeMismatchError(
        f"Value {value!r} of type {type(value).__name__} is not a valid "
        f"'{type_id.type_name}' meta-info value."
    )


def _is_real(value: Any) -> bool:
    return isinstance(value, (int, float, numpy.integer, numpy.floating)) and not isinstance(
        value, (bool, numpy.bool_)
    )


def _render_scalar(value: Any) -> str:
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
