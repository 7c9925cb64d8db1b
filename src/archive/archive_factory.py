"""Name-keyed archive backend factory.

The factory is an explicit object owned by the caller. A fresh
default factory knows every backend shipped with Serialbox.
"""

from __future__ import annotations

from pathlib import Path

from archive.archive_base import Archive, ArchiveConstructor
from archive.binary_archive import BinaryArchive
from core.errors import SerialboxConfigError
from core.types import OpenMode


class ArchiveFactory:
    """Registry of archive constructors keyed by backend name."""

    def __init__(self) -> None:
        self._constructors: dict[str, ArchiveConstructor] = {}

    def register(self, name: str, constructor: ArchiveConstructor) -> None:
        """Register ``constructor`` under ``name``.

        Raises:
            SerialboxConfigError: If ``name`` is already registered.
        """
        if name in self._constructors:
            raise SerialboxConfigError(
                f"Archive '{name}' is already registered. Pick a distinct backend name."
            )
        self._constructors[name] = constructor

    def registered_archives(self) -> list[str]:
        return sorted(self._constructors)

    def create(self, name: str, mode: OpenMode, directory: Path, prefix: str) -> Archive:
        """Instantiate the backend registered as ``name``.

        Raises:
            SerialboxConfigError: If ``name`` is not registered.
        """
        constructor = self._constructors.get(name)
        if constructor is None:
            supported = ", ".join(self.registered_archives()) or "none"
            raise SerialboxConfigError(
                f"Unsupported archive '{name}'. Registered archives: {supported}."
            )
        return constructor(mode, directory, prefix)


def default_archive_factory() -> ArchiveFactory:
    """Return a new factory with the built-in backends registered."""
    factory = ArchiveFactory()
    factory.register(BinaryArchive.NAME, BinaryArchive)
    return factory
