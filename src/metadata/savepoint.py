"""Savepoints and the savepoint registry.

A savepoint is identified by its name together with its meta-info.
The registry keeps savepoints in insertion order and maps, per
savepoint, every field written there onto its archive locator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from core.constants import FIELD_OFFSETS_KEY, META_INFO_KEY, NAME_KEY
from core.errors import SerialboxStructuralError
from core.types import FieldID
from metadata.meta_info import MetaInfoMap


class Savepoint:
    """Named, meta-info qualified point of a simulation run."""

    def __init__(
        self, name: str, meta_info: MetaInfoMap | Mapping[str, Any] | None = None
    ) -> None:
        self._name = name
        if isinstance(meta_info, MetaInfoMap):
            self._meta_info = meta_info.copy()
        else:
            self._meta_info = MetaInfoMap(meta_info)

    @property
    def name(self) -> str:
        return self._name

    @property
    def meta_info(self) -> MetaInfoMap:
        return self._meta_info

    def add_meta_info(self, key: str, value: Any) -> bool:
        """Attach one meta-info pair; ``False`` if ``key`` is already set."""
        return self._meta_info.insert(key, value)

    def copy(self) -> "Savepoint":
        return Savepoint(self._name, self._meta_info)

    def identity(self) -> tuple[str, frozenset[tuple[str, Any]]]:
        """Hashable key combining name and meta-info."""
        return self._name, frozenset(self._meta_info.items())

    def to_document(self) -> dict[str, Any]:
        return {NAME_KEY: self._name, META_INFO_KEY: self._meta_info.to_document()}

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> "Savepoint":
        """Rebuild a savepoint from its document form.

        Raises:
            SerialboxStructuralError: If the name is missing.
        """
        if not isinstance(document, Mapping) or NAME_KEY not in document:
            raise SerialboxStructuralError(f"savepoint node needs '{NAME_KEY}', got {document!r}")
        meta_info = MetaInfoMap()
        meta_info.from_document(document.get(META_INFO_KEY))
        return cls(str(document[NAME_KEY]), meta_info)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Savepoint):
            return NotImplemented
        return self._name == other._name and self._meta_info == other._meta_info

    def __hash__(self) -> int:
        return hash(self.identity())

    def __str__(self) -> str:
        if not len(self._meta_info):
            return self._name
        return f"{self._name} {self._meta_info!r}"

    def __repr__(self) -> str:
        return f"Savepoint({self})"


@dataclass
class _SavepointEntry:
    savepoint: Savepoint
    fields: dict[str, FieldID] = field(default_factory=dict)


class SavepointVector:
    """Ordered registry of savepoints."""

    def __init__(self) -> None:
        self._entries: list[_SavepointEntry] = []
        self._index: dict[tuple[str, frozenset[tuple[str, Any]]], int] = {}

    def find(self, savepoint: Savepoint) -> int | None:
        """Return the index of ``savepoint`` or ``None`` if unknown."""
        return self._index.get(savepoint.identity())

    def insert(self, savepoint: Savepoint) -> int | None:
        """Append ``savepoint`` and return its index.

        Returns ``None`` without mutation if an identical savepoint exists.
        """
        identity = savepoint.identity()
        if identity in self._index:
            return None
        self._entries.append(_SavepointEntry(savepoint=savepoint.copy()))
        self._index[identity] = len(self._entries) - 1
        return self._index[identity]

    def has_field(self, index: int, name: str) -> bool:
        return name in self._entries[index].fields

    def add_field(self, index: int, field_id: FieldID) -> None:
        """Map ``field_id.name`` to ``field_id`` at savepoint ``index``.

        Callers check ``has_field`` first; mappings are never overwritten.
        """
        self._entries[index].fields[field_id.name] = field_id

    def remove_field(self, index: int, name: str) -> None:
        self._entries[index].fields.pop(name, None)

    def remove_last(self) -> None:
        """Drop the most recently inserted savepoint."""
        entry = self._entries.pop()
        del self._index[entry.savepoint.identity()]

    def get_field_id(self, index: int, name: str) -> FieldID | None:
        return self._entries[index].fields.get(name)

    def fields_at(self, index: int) -> list[str]:
        """Return the names of fields written at savepoint ``index``."""
        return list(self._entries[index].fields)

    def savepoints(self) -> list[Savepoint]:
        return [entry.savepoint.copy() for entry in self._entries]

    def clear(self) -> None:
        self._entries.clear()
        self._index.clear()

    def to_document(self) -> list[dict[str, Any]]:
        """Return the savepoint list with per-savepoint field slots."""
        nodes: list[dict[str, Any]] = []
        for entry in self._entries:
            node = entry.savepoint.to_document()
            node[FIELD_OFFSETS_KEY] = {
                name: field_id.slot for name, field_id in entry.fields.items()
            }
            nodes.append(node)
        return nodes

    def from_document(self, document: list[Any] | None) -> None:
        """Replace the registry with the savepoints of ``document``.

        Raises:
            SerialboxStructuralError: If the document is ill-formed.
        """
        self.clear()
        if not document:
            return
        if not isinstance(document, list):
            raise SerialboxStructuralError("savepoint list must be a JSON array")
        for node in document:
            savepoint = Savepoint.from_document(node)
            index = self.insert(savepoint)
            if index is None:
                raise SerialboxStructuralError(
                    f"duplicate savepoint '{savepoint}' in savepoint list"
                )
            offsets = node.get(FIELD_OFFSETS_KEY) or {}
            if not isinstance(offsets, Mapping):
                raise SerialboxStructuralError(
                    f"'{FIELD_OFFSETS_KEY}' of savepoint '{savepoint}' must be an object"
                )
            for name, slot in offsets.items():
                if isinstance(slot, bool) or not isinstance(slot, int) or slot < 0:
                    raise SerialboxStructuralError(
                        f"invalid slot {slot!r} for field '{name}' at savepoint '{savepoint}'"
                    )
                self.add_field(index, FieldID(name=str(name), slot=slot))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SavepointVector):
            return NotImplemented
        return [(entry.savepoint, entry.fields) for entry in self._entries] == [
            (entry.savepoint, entry.fields) for entry in other._entries
        ]
