"""Metadata format versioning.

Versions are encoded as ``major * 100 + minor * 10 + patch`` in
metadata documents. Compatibility is decided by ``is_compatible``.
"""

from __future__ import annotations

from core.constants import (
    SERIALBOX_VERSION_MAJOR,
    SERIALBOX_VERSION_MINOR,
    SERIALBOX_VERSION_PATCH,
)


def encode_version(major: int, minor: int, patch: int) -> int:
    """Encode a version triple as stored in metadata documents."""
    return 100 * major + 10 * minor + patch


def decode_version(encoded: int) -> tuple[int, int, int]:
    """Split an encoded version into ``(major, minor, patch)``."""
    return encoded // 100, (encoded // 10) % 10, encoded % 10


def version_string(encoded: int) -> str:
    """Render an encoded version as ``major.minor.patch``."""
    major, minor, patch = decode_version(encoded)
    return f"{major}.{minor}.{patch}"


def library_version() -> int:
    """Return the encoded version of the running library."""
    return encode_version(
        SERIALBOX_VERSION_MAJOR, SERIALBOX_VERSION_MINOR, SERIALBOX_VERSION_PATCH
    )


def is_compatible(encoded: int) -> bool:
    """Return whether metadata written by ``encoded`` can be loaded.

    Major and minor must equal the library's; patch releases may drift.
    """
    major, minor, _ = decode_version(encoded)
    return major == SERIALBOX_VERSION_MAJOR and minor == SERIALBOX_VERSION_MINOR
