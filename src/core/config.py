"""Runtime configuration model for Serialbox.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os

from core.constants import DEFAULT_ARCHIVE_NAME, DEFAULT_LOG_LEVEL
from core.errors import SerialboxConfigError

SUPPORTED_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_TRUE_WORDS = ("1", "true", "yes", "on")
_FALSE_WORDS = ("0", "false", "no", "off")


@dataclass(frozen=True)
class SerialboxConfig:
    """Validated runtime configuration.

    Attributes:
        archive_name: Archive backend used when a serializer names none.
        log_level: Minimum structured log level.
        legacy_upgrade: Whether legacy metadata is upgraded on open.
    """

    archive_name: str
    log_level: str
    legacy_upgrade: bool

    @classmethod
    def from_env(cls) -> "SerialboxConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            SerialboxConfigError: If environment values are invalid.
        """
        archive_name = os.getenv("SERIALBOX_ARCHIVE", DEFAULT_ARCHIVE_NAME).strip()
        if not archive_name:
            raise SerialboxConfigError(
                "Invalid SERIALBOX_ARCHIVE value: expected a backend name, got an empty string. "
                "Unset SERIALBOX_ARCHIVE or set it to a registered archive such as 'Binary'."
            )
        log_level = log_level_from_env()
        legacy_upgrade = _parse_flag(
            "SERIALBOX_LEGACY_UPGRADE", os.getenv("SERIALBOX_LEGACY_UPGRADE", "1")
        )
        return cls(
            archive_name=archive_name,
            log_level=log_level,
            legacy_upgrade=legacy_upgrade,
        )


def log_level_from_env() -> str:
    """Return the validated SERIALBOX_LOG_LEVEL without reading other settings.

    Raises:
        SerialboxConfigError: If the level is unknown.
    """
    return _parse_log_level(os.getenv("SERIALBOX_LOG_LEVEL", DEFAULT_LOG_LEVEL))

def _parse_log_level(raw_value: str) -> str:
    """Parse the log level environment value.

    Args:
        raw_value: Raw string from environment.

    Returns:
        Upper-cased level name.

    Raises:
        SerialboxConfigError: If the level is unknown.
    """
    level = raw_value.strip().upper()
    if level not in SUPPORTED_LOG_LEVELS:
        supported = ", ".join(SUPPORTED_LOG_LEVELS)
        raise SerialboxConfigError(
            f"Invalid SERIALBOX_LOG_LEVEL value: got '{raw_value}'. Choose one of: {supported}."
        )
    return level


def _parse_flag(variable_name: str, raw_value: str) -> bool:
    """Parse a boolean switch from its environment word."""
    word = raw_value.strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise SerialboxConfigError(
        f"Invalid {variable_name} value: expected a boolean word, got '{raw_value}'. "
        f"Use one of {', '.join(_TRUE_WORDS + _FALSE_WORDS)}."
    )
