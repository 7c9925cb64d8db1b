"""Archive capability contract."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Protocol

import numpy

from core.types import FieldID, OpenMode


class Archive(Protocol):
    """Operations every storage backend provides to the serializer."""

    def write(self, array: numpy.ndarray, field_name: str) -> FieldID: ...

    def read(self, array: numpy.ndarray, field_id: FieldID) -> None: ...

    def clear(self) -> None: ...

    def update_meta_data(self) -> None: ...

    def discard(self, field_id: FieldID) -> None:
        """Forget ``field_id`` if the most recent write created its slot."""
        ...


ArchiveConstructor = Callable[[OpenMode, Path, str], Archive]
