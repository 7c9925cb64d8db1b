"""Field registry.

This module stores the declared element type, shape and meta-info
of every field. Each name is declared once and never altered.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from numbers import Integral
from typing import Any, Iterator, Mapping, Sequence

from core.constants import FIELD_MAP_KEY, META_INFO_KEY, SHAPE_KEY, TYPE_KEY
from core.errors import SerialboxStructuralError, SerialboxTypeMismatchError
from core.type_id import TypeID
from metadata.meta_info import MetaInfoMap


@dataclass(frozen=True)
class FieldMetaInfo:
    """Declaration of one field.

    Attributes:
        type_id: Element type of the field.
        dims: Shape of the field, one extent per dimension.
        meta_info: User meta-info attached to the field.
    """

    type_id: TypeID
    dims: tuple[int, ...]
    meta_info: MetaInfoMap = field(default_factory=MetaInfoMap)

    def to_document(self) -> dict[str, Any]:
        return {
            TYPE_KEY: self.type_id.type_name,
            SHAPE_KEY: list(self.dims),
            META_INFO_KEY: self.meta_info.to_document(),
        }

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "FieldMetaInfo":
        """Rebuild a declaration from its document form.

        Raises:
            SerialboxStructuralError: If a key is missing or malformed.
        """
        if not isinstance(document, Mapping):
            raise SerialboxStructuralError("field declaration must be a JSON object")
        for required_key in (TYPE_KEY, SHAPE_KEY):
            if required_key not in document:
                raise SerialboxStructuralError(f"no node '{required_key}'")
        try:
            type_id = TypeID.from_name(str(document[TYPE_KEY]))
        except SerialboxTypeMismatchError as error:
            raise SerialboxStructuralError(str(error)) from error
        dims = _validate_dims(document[SHAPE_KEY])
        meta_info = MetaInfoMap()
        meta_info.from_document(document.get(META_INFO_KEY))
        return cls(type_id=type_id, dims=dims, meta_info=meta_info)


class FieldMap:
    """Registry of field declarations keyed by field name."""

    def __init__(self) -> None:
        self._fields: dict[str, FieldMetaInfo] = {}

    def insert(
        self,
        name: str,
        type_id: TypeID,
        dims: Sequence[int],
        meta_info: MetaInfoMap | None = None,
    ) -> bool:
        """Declare a new field.

        Returns:
            ``False`` without mutation when ``name`` is already declared.

        Raises:
            SerialboxStructuralError: If ``dims`` holds negative extents.
        """
        if name in self._fields:
            return False
        self._fields[name] = FieldMetaInfo(
            type_id=TypeID(type_id),
            dims=_validate_dims(dims),
            meta_info=meta_info.copy() if meta_info is not None else MetaInfoMap(),
        )
        return True

    def find(self, name: str) -> FieldMetaInfo | None:
        return self._fields.get(name)

    def names(self) -> list[str]:
        """Return declared field names in registry order."""
        return list(self._fields)

    def remove(self, name: str) -> None:
        self._fields.pop(name, None)

    def clear(self) -> None:
        self._fields.clear()

    def to_document(self) -> dict[str, Any]:
        """Return ``{"field-map": {...}}``, or ``{}`` when no field is declared."""
        if not self._fields:
            return {}
        return {
            FIELD_MAP_KEY: {name: info.to_document() for name, info in self._fields.items()}
        }

    def from_document(self, document: Mapping[str, Any] | None) -> None:
        """Replace the registry with the declarations of ``document``.

        An absent or empty document yields an empty registry. A present
        document without the ``field-map`` node is an error.

        Raises:
            SerialboxStructuralError: If the document is ill-formed.
        """
        self.clear()
        if not document:
            return
        if FIELD_MAP_KEY not in document:
            raise SerialboxStructuralError(f"cannot create FieldMap: no node '{FIELD_MAP_KEY}'")
        field_nodes = document[FIELD_MAP_KEY] or {}
        if not isinstance(field_nodes, Mapping):
            raise SerialboxStructuralError(
                f"cannot create FieldMap: '{FIELD_MAP_KEY}' is not an object"
            )
        for name, node in field_nodes.items():
            try:
                self._fields[str(name)] = FieldMetaInfo.from_document(node)
            except SerialboxStructuralError as error:
                raise SerialboxStructuralError(
                    f"cannot insert node '{name}' in FieldMap: JSON node ill-formed: {error}"
                ) from error

    def __contains__(self, name: object) -> bool:
        return name in self._fields

    def __len__(self) -> int:
        return len(self._fields)

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldMap):
            return NotImplemented
        return self._fields == other._fields


def _validate_dims(raw_dims: Any) -> tuple[int, ...]:
    """Validate a shape as a sequence of non-negative integers."""
    if isinstance(raw_dims, (str, bytes)) or not isinstance(raw_dims, Sequence):
        raise SerialboxStructuralError(f"shape must be a list of integers, got {raw_dims!r}")
    dims: list[int] = []
    for extent in raw_dims:
        if isinstance(extent, bool) or not isinstance(extent, Integral) or extent < 0:
            raise SerialboxStructuralError(
                f"shape extents must be non-negative integers, got {list(raw_dims)!r}"
            )
        dims.append(int(extent))
    return tuple(dims)
