"""Serialbox exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each failure kind of the serializer maps onto one error type.
"""

from __future__ import annotations


class SerialboxError(Exception):
    """Base exception for all Serialbox failures."""


class SerialboxConfigError(SerialboxError):
    """Raised for invalid runtime configuration or unknown archive backends."""


class SerialboxModeError(SerialboxError):
    """Raised when an operation is not permitted in the serializer's open mode."""


class SerialboxUnknownFieldError(SerialboxError):
    """Raised for operations on a field that was never registered."""


class SerialboxTypeMismatchError(SerialboxError):
    """Raised when a buffer or value disagrees with the registered type."""


class SerialboxShapeMismatchError(SerialboxError):
    """Raised when a buffer disagrees with the registered field shape."""


class SerialboxDuplicateFieldError(SerialboxError):
    """Raised when a field is written twice at the same savepoint."""


class SerialboxUnknownSavepointError(SerialboxError):
    """Raised when reading at a savepoint that was never written."""


class SerialboxStructuralError(SerialboxError):
    """Raised for malformed metadata documents and archive index corruption."""


class SerialboxFilesystemError(SerialboxError):
    """Raised when an underlying filesystem operation fails."""
